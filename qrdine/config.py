from pydantic_settings import BaseSettings, SettingsConfigDict

MOCK_KEY_PLACEHOLDER = "rzp_test_placeholder"

class Settings(BaseSettings):
    APP_ENV: str = "dev"
    APP_SECRET: str
    DB_URL: str = "sqlite:///./qrdine.db"
    JWT_ISS: str = "qrdine"
    JWT_EXP_MIN: int = 12*60
    LOG_LEVEL: str = "INFO"
    BASE_URL: str = "http://localhost:8000"

    # payment gateway; no key id means mock mode
    RAZORPAY_KEY_ID: str | None = None
    RAZORPAY_KEY_SECRET: str | None = None
    RAZORPAY_API_URL: str = "https://api.razorpay.com/v1"
    PAYMENT_CURRENCY: str = "INR"
    PAYMENT_HTTP_TIMEOUT: float = 10.0

    # live streams
    SSE_KEEPALIVE_SECONDS: float = 30.0
    SSE_QUEUE_SIZE: int = 256

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    @property
    def payments_mocked(self) -> bool:
        return not self.RAZORPAY_KEY_ID or self.RAZORPAY_KEY_ID == MOCK_KEY_PLACEHOLDER

settings = Settings()
