import aioboto3
import os
from botocore.exceptions import BotoCoreError, ClientError
import logging

logger = logging.getLogger(__name__)


class StorageError(Exception):
    pass


class SelectelS3Service:
    """Хранилище документов в Selectel Object Storage (S3-совместимый API)."""

    def __init__(self):
        self.bucket_name = os.getenv('S3_BUCKET_NAME', 'contracts')
        self.region = os.getenv('AWS_REGION', 'ru-7')
        self.endpoint_url = os.getenv('S3_ENDPOINT_URL', 'https://s3.ru-7.storage.selcloud.ru')  # для API
        self.access_domain = os.getenv('S3_ACCESS_DOMAIN',
                                       f'{self.bucket_name}.s3.ru-7.storage.selcloud.ru')  # для публичных ссылок
        self.session = None
        self._bucket_checked = False
        self._initialize_session()

    def _initialize_session(self):
        """Инициализация асинхронной сессии"""
        try:
            self.session = aioboto3.Session(
                aws_access_key_id=os.getenv('AWS_ACCESS_KEY_ID'),
                aws_secret_access_key=os.getenv('AWS_SECRET_ACCESS_KEY'),
                region_name=self.region
            )
            logger.info(f"Initialized async Selectel session: {self.endpoint_url}")
            logger.info(f"File access domain: {self.access_domain}")
        except Exception as e:
            logger.warning(f"Selectel session initialization warning: {e}")

    async def _ensure_bucket_exists(self):
        """Проверяет бакет один раз на процесс и создает его, если нужно"""
        if self._bucket_checked:
            return

        async with self.session.client('s3', endpoint_url=self.endpoint_url) as s3_client:
            try:
                await s3_client.head_bucket(Bucket=self.bucket_name)
                logger.info(f"Bucket {self.bucket_name} is accessible")
            except ClientError as e:
                error_code = e.response['Error']['Code']
                if error_code != '404':
                    raise StorageError(f"Bucket access error: {error_code}") from e
                logger.info(f"Bucket {self.bucket_name} not found, creating...")
                await s3_client.create_bucket(
                    Bucket=self.bucket_name,
                    CreateBucketConfiguration={
                        'LocationConstraint': self.region
                    }
                )
                logger.info(f"Bucket {self.bucket_name} created successfully")
        self._bucket_checked = True

    def get_file_url(self, file_key: str) -> str:
        """Публичная ссылка на файл: домен для доступа, а не API endpoint"""
        return f"https://{self.access_domain}/{file_key}"

    async def upload_bytes(self, file_key: str, data: bytes, content_type: str = 'application/pdf') -> str:
        """Кладет файл по ключу (существующий файл перезаписывается) и возвращает публичную ссылку"""
        if not self.session:
            raise StorageError("S3 session is not initialized")

        try:
            await self._ensure_bucket_exists()
            async with self.session.client('s3', endpoint_url=self.endpoint_url) as s3_client:
                await s3_client.put_object(
                    Bucket=self.bucket_name,
                    Key=file_key,
                    Body=data,
                    ACL='public-read',
                    ContentType=content_type,
                )
        except (BotoCoreError, ClientError) as e:
            logger.error(f"Selectel upload error for {file_key}: {e}")
            raise StorageError(str(e)) from e

        file_url = self.get_file_url(file_key)
        logger.info(f"File uploaded successfully: {file_url}")
        return file_url
