"""Конфигурация приложения"""
from decimal import Decimal
from pydantic_settings import BaseSettings
from typing import List


class Settings(BaseSettings):
    """Настройки приложения"""

    # Telegram Bot
    BOT_TOKEN: str = ""

    # Database
    DB_HOST: str = "localhost"
    DB_PORT: int = 5432
    DB_USER: str = ""
    DB_PASSWORD: str = ""
    DB_NAME: str = ""
    # Полный URL имеет приоритет над DB_* (например, sqlite+aiosqlite для локального запуска)
    DATABASE_URL: str = ""

    # Admin
    ADMIN_USER_IDS: str = ""

    # Auction Settings
    # Длительность аукциона по умолчанию (в часах), если продавец не указал end_time
    AUCTION_DURATION_HOURS: float = 2.0
    DEFAULT_BID_INCREMENT: Decimal = Decimal("1.00")
    # Как часто планировщик завершает истекшие аукционы (в секундах)
    AUCTION_SWEEP_INTERVAL: float = 60.0

    # Bidding
    # Сколько ждать блокировку аукциона, прежде чем вернуть Busy (в секундах)
    BID_LOCK_TIMEOUT: float = 5.0
    STORAGE_RETRY_ATTEMPTS: int = 3
    STORAGE_RETRY_MIN_WAIT: float = 0.05
    STORAGE_RETRY_MAX_WAIT: float = 1.0

    @property
    def admin_ids_list(self) -> List[int]:
        """Список ID администраторов"""
        if not self.ADMIN_USER_IDS:
            return []
        return [int(uid.strip()) for uid in self.ADMIN_USER_IDS.split(",") if uid.strip()]

    @property
    def database_url(self) -> str:
        """URL подключения к базе данных"""
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return f"postgresql+asyncpg://{self.DB_USER}:{self.DB_PASSWORD}@{self.DB_HOST}:{self.DB_PORT}/{self.DB_NAME}"

    class Config:
        env_file = ".env"
        case_sensitive = True


settings = Settings()
