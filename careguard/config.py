import os
from pydantic_settings import BaseSettings
from typing import Optional


class Settings(BaseSettings):
    DATABASE_URL: Optional[str] = os.getenv("DATABASE_URL")
    
    AWS_REGION: str = os.getenv("AWS_REGION", "us-east-1")
    AWS_ACCESS_KEY_ID: Optional[str] = os.getenv("AWS_ACCESS_KEY_ID")
    AWS_SECRET_ACCESS_KEY: Optional[str] = os.getenv("AWS_SECRET_ACCESS_KEY")
    AWS_SES_SENDER_EMAIL: Optional[str] = os.getenv("AWS_SES_SENDER_EMAIL")
    
    TWILIO_ACCOUNT_SID: Optional[str] = os.getenv("TWILIO_ACCOUNT_SID")
    TWILIO_AUTH_TOKEN: Optional[str] = os.getenv("TWILIO_AUTH_TOKEN")
    TWILIO_PHONE_NUMBER: Optional[str] = os.getenv("TWILIO_PHONE_NUMBER")
    
    FIREBASE_CREDENTIALS_JSON: Optional[str] = os.getenv("FIREBASE_CREDENTIALS_JSON")
    
    NOTIFICATION_DRY_RUN: bool = os.getenv("NOTIFICATION_DRY_RUN", "false").lower() == "true"
    
    EMERGENCY_SERVICES_NUMBER: str = os.getenv("EMERGENCY_SERVICES_NUMBER", "911")
    EMERGENCY_SERVICES_WEBHOOK_URL: Optional[str] = os.getenv("EMERGENCY_SERVICES_WEBHOOK_URL")
    EMERGENCY_SERVICES_WEBHOOK_TOKEN: Optional[str] = os.getenv("EMERGENCY_SERVICES_WEBHOOK_TOKEN")
    
    INTERNAL_API_KEY: Optional[str] = os.getenv("INTERNAL_API_KEY")
    ESCALATION_SCHEDULER_ENABLED: bool = os.getenv("ESCALATION_SCHEDULER_ENABLED", "true").lower() == "true"
    
    CORS_ORIGINS: list = ["http://localhost:5000", "http://127.0.0.1:5000"]
    
    ENVIRONMENT: str = os.getenv("ENVIRONMENT", "development")
    
    def validate_database_url(self):
        if not self.DATABASE_URL:
            raise ValueError(
                "DATABASE_URL environment variable is required for database operations. "
                "Please set it to your PostgreSQL connection string."
            )
    
    def twilio_configured(self) -> bool:
        return bool(self.TWILIO_ACCOUNT_SID and self.TWILIO_AUTH_TOKEN and self.TWILIO_PHONE_NUMBER)
    
    def ses_configured(self) -> bool:
        return bool(self.AWS_SES_SENDER_EMAIL)
    
    class Config:
        env_file = ".env"


settings = Settings()
