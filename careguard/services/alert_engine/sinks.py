"""
Notification Sinks - Provider adapters behind the dispatcher.

Channels:
1. SMS - Twilio Messaging
2. Call - Twilio Programmable Voice (text-to-speech)
3. Email - AWS SES
4. Push - Firebase Cloud Messaging

A sink either returns True, returns False, or raises; the dispatcher
records all three outcomes on the notification attempt. The log-only sinks
are used for dry runs and for channels whose provider is not configured.
"""

import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, asdict
from typing import Any, Dict, List, Optional

import boto3
import firebase_admin
import httpx
from firebase_admin import credentials, messaging
from twilio.rest import Client as TwilioClient
from twilio.twiml.voice_response import VoiceResponse

from careguard.config import Settings
from careguard.core.exceptions import TransientDeliveryFailure
from careguard.core.logging import mask_destination
from careguard.schemas.enums import NotificationChannel

logger = logging.getLogger(__name__)


@dataclass
class RenderedMessage:
    """Channel-neutral notification content"""
    title: str
    body: str
    location: Optional[str] = None
    data: Dict[str, str] = field(default_factory=dict)

    def as_text(self) -> str:
        return "\n".join(part for part in (self.title, self.body, self.location) if part)


@dataclass
class EmergencyServicesPayload:
    """Everything a dispatcher needs to send help to the patient"""
    alert_id: str
    patient_id: str
    patient_name: str
    patient_phone: Optional[str]
    contact_phones: List[str]
    location: Optional[Dict[str, Any]]
    alert_type: str
    severity: str
    notes: Optional[str]
    requested_at: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class NotificationSink(ABC):
    """Delivers a rendered message to one destination on one channel"""

    channel: NotificationChannel

    @abstractmethod
    def send(self, destination: str, message: RenderedMessage) -> bool:
        ...


class LogOnlySink(NotificationSink):
    """Writes the notification to the log instead of a provider"""

    def __init__(self, channel: NotificationChannel):
        self.channel = channel

    def send(self, destination: str, message: RenderedMessage) -> bool:
        logger.info(f"[DRY RUN] {self.channel.value} to {mask_destination(destination)}: {message.title}")
        return True


class TwilioSmsSink(NotificationSink):
    channel = NotificationChannel.SMS

    def __init__(self, client: TwilioClient, from_number: str):
        self.client = client
        self.from_number = from_number

    def send(self, destination: str, message: RenderedMessage) -> bool:
        result = self.client.messages.create(
            body=message.as_text(),
            from_=self.from_number,
            to=destination
        )
        logger.info(f"SMS sent: {result.sid}")
        return True


class TwilioCallSink(NotificationSink):
    """Places a voice call that reads the alert aloud twice"""

    channel = NotificationChannel.CALL

    def __init__(self, client: TwilioClient, from_number: str):
        self.client = client
        self.from_number = from_number

    def send(self, destination: str, message: RenderedMessage) -> bool:
        response = VoiceResponse()
        spoken = f"{message.title}. {message.body}"
        response.say(spoken, voice="alice")
        response.pause(length=1)
        response.say(spoken, voice="alice")
        call = self.client.calls.create(
            twiml=str(response),
            to=destination,
            from_=self.from_number
        )
        logger.info(f"Voice call initiated: {call.sid}")
        return True


class SesEmailSink(NotificationSink):
    channel = NotificationChannel.EMAIL

    def __init__(self, ses_client, sender_email: str):
        self.ses_client = ses_client
        self.sender_email = sender_email

    def send(self, destination: str, message: RenderedMessage) -> bool:
        response = self.ses_client.send_email(
            Source=self.sender_email,
            Destination={'ToAddresses': [destination]},
            Message={
                'Subject': {'Data': message.title},
                'Body': {'Text': {'Data': message.as_text()}}
            }
        )
        logger.info(f"Email sent: {response['MessageId']}")
        return True


class FirebasePushSink(NotificationSink):
    channel = NotificationChannel.PUSH

    def __init__(self, app=None):
        self.app = app

    def send(self, destination: str, message: RenderedMessage) -> bool:
        body = message.body if not message.location else f"{message.body}\n{message.location}"
        push = messaging.Message(
            notification=messaging.Notification(title=message.title, body=body),
            token=destination,
            data={k: str(v) for k, v in message.data.items()},
            android=messaging.AndroidConfig(priority="high"),
        )
        message_id = messaging.send(push, app=self.app)
        logger.info(f"Push sent: {message_id}")
        return True


class EmergencyServicesSink(ABC):
    """Hands a structured emergency payload to an emergency-services integration"""

    @abstractmethod
    def notify(self, payload: EmergencyServicesPayload) -> bool:
        ...


class LoggedEmergencyServicesSink(EmergencyServicesSink):
    """Records the request for an operator; no live integration"""

    def notify(self, payload: EmergencyServicesPayload) -> bool:
        logger.error(
            f"EMERGENCY SERVICES REQUESTED for alert {payload.alert_id} "
            f"(type={payload.alert_type}, severity={payload.severity}, "
            f"location={'yes' if payload.location else 'no'})"
        )
        return True


class WebhookEmergencyServicesSink(EmergencyServicesSink):
    """POSTs the payload to a dispatch integration over HTTPS"""

    def __init__(self, url: str, token: Optional[str] = None, timeout: float = 10.0):
        self.url = url
        self.token = token
        self.timeout = timeout

    def notify(self, payload: EmergencyServicesPayload) -> bool:
        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        try:
            response = httpx.post(self.url, json=payload.to_dict(), headers=headers, timeout=self.timeout)
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise TransientDeliveryFailure(f"Emergency services webhook failed: {type(e).__name__}") from e
        logger.info(f"Emergency services webhook accepted alert {payload.alert_id}")
        return True


def _init_firebase(credentials_json: str):
    """Initialize the Firebase app once per process"""
    if firebase_admin._apps:
        return firebase_admin.get_app()
    creds_dict = json.loads(credentials_json)
    # Escaped newlines in private_key when the JSON comes from an env var
    if "private_key" in creds_dict:
        creds_dict["private_key"] = creds_dict["private_key"].replace("\\n", "\n")
    return firebase_admin.initialize_app(credentials.Certificate(creds_dict))


def build_notification_sinks(settings: Settings) -> Dict[NotificationChannel, NotificationSink]:
    """
    Build one sink per configured channel.
    
    Channels without a configured provider get no sink; the dispatcher
    records attempts on them as failed.
    """
    if settings.NOTIFICATION_DRY_RUN:
        logger.warning("NOTIFICATION_DRY_RUN enabled - notifications are logged, not sent")
        return {channel: LogOnlySink(channel) for channel in NotificationChannel}
    
    sinks: Dict[NotificationChannel, NotificationSink] = {}
    
    if settings.twilio_configured():
        try:
            client = TwilioClient(settings.TWILIO_ACCOUNT_SID, settings.TWILIO_AUTH_TOKEN)
            sinks[NotificationChannel.SMS] = TwilioSmsSink(client, settings.TWILIO_PHONE_NUMBER)
            sinks[NotificationChannel.CALL] = TwilioCallSink(client, settings.TWILIO_PHONE_NUMBER)
            logger.info("Twilio SMS and voice notifications enabled")
        except Exception as e:
            logger.warning(f"Twilio initialization failed: {e}")
    else:
        logger.warning("Twilio not configured - SMS and voice notifications disabled")
    
    if settings.ses_configured():
        try:
            ses_client = boto3.client(
                'ses',
                region_name=settings.AWS_REGION,
                aws_access_key_id=settings.AWS_ACCESS_KEY_ID,
                aws_secret_access_key=settings.AWS_SECRET_ACCESS_KEY
            )
            sinks[NotificationChannel.EMAIL] = SesEmailSink(ses_client, settings.AWS_SES_SENDER_EMAIL)
            logger.info("AWS SES email notifications enabled")
        except Exception as e:
            logger.warning(f"AWS SES initialization failed: {e}")
    else:
        logger.warning("AWS_SES_SENDER_EMAIL not set - email notifications disabled")
    
    if settings.FIREBASE_CREDENTIALS_JSON:
        try:
            sinks[NotificationChannel.PUSH] = FirebasePushSink(_init_firebase(settings.FIREBASE_CREDENTIALS_JSON))
            logger.info("Firebase push notifications enabled")
        except Exception as e:
            logger.error(f"Failed to initialize Firebase: {e}")
    else:
        logger.warning("No FIREBASE_CREDENTIALS_JSON set - push notifications disabled")
    
    return sinks


def build_emergency_services_sink(settings: Settings) -> EmergencyServicesSink:
    if settings.EMERGENCY_SERVICES_WEBHOOK_URL and not settings.NOTIFICATION_DRY_RUN:
        return WebhookEmergencyServicesSink(
            settings.EMERGENCY_SERVICES_WEBHOOK_URL,
            token=settings.EMERGENCY_SERVICES_WEBHOOK_TOKEN
        )
    return LoggedEmergencyServicesSink()
