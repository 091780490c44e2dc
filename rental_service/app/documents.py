"""HTML договора и акта возврата.

Функции здесь чистые: на вход снимок аренды (ORM-объект или словарь в виде
ответа get-contract-details), на выход разметка тела документа. Любое
отсутствующее поле заменяется на заглушку, исключений на неполных данных нет.
"""
from datetime import date
from html import escape
from typing import Any, Iterable, Optional

from .passport import parse_passport

PLACEHOLDER = "N/A"
DEFAULT_CITY = "Москва"

NO_DEFECTS_TEXT = "Неисправности на момент сдачи не выявлены."
CONTRACT_ACCEPTANCE_TEXT = (
    "Инструктаж пройден, с условиями согласен, техника и оборудование комплектны, "
    "на момент передачи исправны, нареканий нет."
)
RETURN_ACCEPTANCE_TEXT = (
    "Арендатор технику и оборудование передал. Арендодатель технику и оборудование получил. "
    "Претензий стороны друг к другу не имеют."
)


def _field(source: Any, name: str) -> Any:
    if source is None:
        return None
    if isinstance(source, dict):
        return source.get(name)
    return getattr(source, name, None)


def _related(snapshot: Any, attr: str, key: str) -> Any:
    # У ORM-объекта связь называется client/bike, в ответах API - clients/bikes
    value = _field(snapshot, attr)
    return value if value is not None else _field(snapshot, key)


def _value(value: Any, placeholder: str = PLACEHOLDER) -> str:
    if value is None or value == "":
        return placeholder
    return escape(str(value))


def _battery_numbers(bike: Any) -> str:
    numbers = _field(bike, "battery_numbers")
    if isinstance(numbers, (list, tuple)):
        return escape(", ".join(str(n) for n in numbers)) if numbers else PLACEHOLDER
    return _value(numbers)


def _row(label: str, value: str) -> str:
    return f"<tr><th>{label}</th><td>{value}</td></tr>"


def _header(title: str, appendix: str, client: Any, today: date) -> str:
    return f"""
        <div style="text-align: center; font-weight: bold; font-size: 1.2em; margin-bottom: 20px;">
            {title}<br>
            ({appendix})
        </div>
        <div style="display: flex; justify-content: space-between; margin-bottom: 20px; font-size: 0.9em;">
            <span>г. {_value(_field(client, "city"), DEFAULT_CITY)}</span>
            <span>{today.strftime("%d.%m.%Y")}</span>
        </div>"""


def equipment_section(bike: Any) -> str:
    rows = [
        _row("Наименование", _value(_field(bike, "model_name"))),
        _row("Номер рамы", _value(_field(bike, "frame_number"))),
        _row("Номера аккумуляторов", _battery_numbers(bike)),
        _row("Рег. номер", _value(_field(bike, "registration_number"))),
        _row("Номер IOT", _value(_field(bike, "iot_device_id"))),
        _row("Доп. оборудование", _value(_field(bike, "additional_equipment"))),
    ]
    return _table("1. Оборудование", rows)


def renter_section(client: Any) -> str:
    passport = parse_passport(_field(client, "recognized_passport_data"))
    rows = [
        _row("ФИО", _value(_field(client, "name"))),
        _row("Дата рождения", _value(passport.birth_date)),
        _row("Паспорт", _value(passport.document_number)),
        _row("Кем выдан", _value(passport.issuing_authority)),
        _row("Дата выдачи", _value(passport.issue_date)),
        _row("Адрес регистрации", _value(passport.registration_address)),
    ]
    return _table("2. Арендатор", rows)


def _table(title: str, rows: Iterable[str]) -> str:
    body = "\n                ".join(rows)
    return f"""
        <h4 style="margin-top: 20px; margin-bottom: 10px;">{title}</h4>
        <table>
            <tbody>
                {body}
            </tbody>
        </table>"""


def defects_section(defects: Optional[Iterable[Any]]) -> str:
    if isinstance(defects, str):
        defects = [defects]
    defects =[d for d in (defects or []) if d is not None and d != ""]
    if not defects:
        return f'<p style="font-size: 0.9em; margin-top: 20px;">{NO_DEFECTS_TEXT}</p>'
    items = "".join(f"<li>{escape(str(d))}</li>" for d in defects)
    return f"""
        <h4 style="margin-top: 20px; margin-bottom: 10px;">3. Выявленные неисправности</h4>
        <ul style="padding-left: 20px; margin-bottom: 20px; font-size: 0.9em;">{items}</ul>"""


def damage_amount(value: Any) -> float:
    """Сумма ущерба из extra_data; все, что не число, считается нулем."""
    if isinstance(value, bool):
        return 0.0
    try:
        return float(value or 0)
    except (TypeError, ValueError):
        return 0.0


def damage_section(amount: Any) -> str:
    amount = damage_amount(amount)
    if amount <= 0:
        return ""
    return f"""
        <h4 style="margin-top: 20px; margin-bottom: 10px;">4. Возмещение ущерба</h4>
        <p style="font-size: 0.9em;">Итоговая сумма к оплате за ущерб: <strong>{amount:.2f} ₽</strong></p>"""


def signature_block(signature_data: Optional[str]) -> str:
    image = ""
    if signature_data:
        image = (
            f'<img src="{escape(signature_data, quote=True)}" alt="Подпись" '
            'style="position: absolute; left: 0; bottom: 15px; width: 180px; height: auto; z-index: 10;"/>'
        )
    return f"""
        <div style="margin-top: 50px; page-break-inside: avoid; width: 400px;">
            <div style="position: relative; height: 100px; text-align: left;">
                {image}
                <div style="position: absolute; left: 0; bottom: 10px; width: 100%; border-bottom: 1px solid #333;"></div>
            </div>
            <div style="text-align: right; font-size: 11px; color: #555;">
                (Подпись Арендатора)
            </div>
        </div>"""


def render_contract(snapshot: Any, signature_data: Optional[str] = None, today: Optional[date] = None) -> str:
    client = _related(snapshot, "client", "clients")
    bike = _related(snapshot, "bike", "bikes")
    today = today or date.today()
    return "".join([
        _header("Акт приема-передачи", "Приложение №1 к Договору проката", client, today),
        equipment_section(bike),
        renter_section(client),
        f'\n        <p style="font-size: 0.9em; margin-top: 20px;">{CONTRACT_ACCEPTANCE_TEXT}</p>',
        signature_block(signature_data),
    ])


def render_return_act(
        snapshot: Any,
        defects: Optional[Iterable[Any]] = None,
        signature_data: Optional[str] = None,
        amount: Any = 0,
        today: Optional[date] = None,
) -> str:
    client = _related(snapshot, "client", "clients")
    bike = _related(snapshot, "bike", "bikes")
    today = today or date.today()
    return "".join([
        _header("Акт приема-передачи (возврата)", "Приложение №2 к Договору проката", client, today),
        equipment_section(bike),
        renter_section(client),
        defects_section(defects),
        damage_section(amount),
        f'\n        <p style="font-size: 0.9em; margin-top: 20px;">{RETURN_ACCEPTANCE_TEXT}</p>',
        signature_block(signature_data),
    ])
