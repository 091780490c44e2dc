"""Разбор распознанных паспортных данных клиента.

В базе поле ``recognized_passport_data`` встречается в трех видах: строка с
JSON, уже готовый объект или пустое значение. Ключи объекта тоже бывают двух
видов: snake_case (``birth_date``, ``series`` ...) и русские подписи полей
(``"Дата рождения"``, ``"Серия"`` ...). Для каждой схемы ключей есть свой
адаптер, схема определяется по набору ключей целиком.
"""
import json
import logging
from typing import Any, Mapping, Optional

from pydantic import BaseModel

logger = logging.getLogger(__name__)


class PassportData(BaseModel):
    birth_date: Optional[str] = None
    series: Optional[str] = None
    number: Optional[str] = None
    issuing_authority: Optional[str] = None
    issue_date: Optional[str] = None
    registration_address: Optional[str] = None

    @property
    def document_number(self) -> str:
        """Серия и номер одной строкой, пустая строка если нет ни того ни другого."""
        return " ".join(part for part in (self.series, self.number) if part)


SNAKE_CASE_KEYS = {
    "birth_date": "birth_date",
    "series": "series",
    "number": "number",
    "issuing_authority": "issuing_authority",
    "issue_date": "issue_date",
    "registration_address": "registration_address",
}

RUSSIAN_LABEL_KEYS = {
    "Дата рождения": "birth_date",
    "Серия": "series",
    "Номер": "number",
    "Кем выдан": "issuing_authority",
    "Дата выдачи": "issue_date",
    "Адрес регистрации": "registration_address",
}


def _text(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _adapt(data: Mapping[str, Any], key_map: Mapping[str, str]) -> PassportData:
    return PassportData(**{field: _text(data.get(key)) for key, field in key_map.items()})


def from_snake_case(data: Mapping[str, Any]) -> PassportData:
    return _adapt(data, SNAKE_CASE_KEYS)


def from_russian_labels(data: Mapping[str, Any]) -> PassportData:
    return _adapt(data, RUSSIAN_LABEL_KEYS)


def _decode(raw: Any) -> Mapping[str, Any]:
    if raw is None:
        return {}
    if isinstance(raw, str):
        if not raw.strip():
            return {}
        try:
            raw = json.loads(raw)
        except ValueError as e:
            logger.warning(f"Failed to parse passport data: {e}")
            return {}
    if not isinstance(raw, Mapping):
        logger.warning(f"Unexpected passport data type: {type(raw).__name__}")
        return {}
    return raw


def parse_passport(raw: Any) -> PassportData:
    """Нормализует паспортные данные в ``PassportData``. Никогда не бросает исключений."""
    data = _decode(raw)
    has_snake = any(key in data for key in SNAKE_CASE_KEYS)
    has_labels = any(key in data for key in RUSSIAN_LABEL_KEYS)

    if has_snake and has_labels:
        logger.warning("Passport data mixes snake_case and labelled keys, reading snake_case")
        return from_snake_case(data)
    if has_labels:
        return from_russian_labels(data)
    if has_snake:
        return from_snake_case(data)
    return PassportData()
