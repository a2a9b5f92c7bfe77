"""
Escalation Engine Configuration Service - Operator-tunable timings and limits.

Provides centralized configuration for:
- Tier wait windows (primary -> secondary -> emergency services)
- Sweep intervals for the escalation and caregiver chain jobs
- Caregiver chain timeout and depth
- Dispatch worker pool sizing and the initial dispatch deadline
- Enabled notification channels
"""

import logging
from typing import Dict, Any, List
from dataclasses import dataclass, asdict, fields
from datetime import timedelta

from careguard.schemas.enums import NotificationChannel

logger = logging.getLogger(__name__)


@dataclass
class EscalationEngineConfig:
    """Complete escalation engine configuration"""
    
    # Alert tiers
    tier1_wait_minutes: float = 5.0
    tier2_wait_minutes: float = 10.0
    terminal_level: int = 2
    
    # Background sweeps
    sweep_interval_seconds: int = 60
    caregiver_sweep_interval_seconds: int = 60
    
    # Caregiver chains
    caregiver_escalation_timeout_minutes: float = 5.0
    caregiver_max_escalation_levels: int = 3
    
    # Dispatch
    dispatch_max_workers: int = 8
    background_max_workers: int = 4
    initial_dispatch_deadline_seconds: float = 10.0
    max_delivery_retries: int = 3
    emergency_services_number: str = "911"
    
    # Notification settings
    sms_enabled: bool = True
    call_enabled: bool = True
    email_enabled: bool = True
    push_enabled: bool = True
    
    def enabled_channels(self) -> List[NotificationChannel]:
        flags = {
            NotificationChannel.PUSH: self.push_enabled,
            NotificationChannel.SMS: self.sms_enabled,
            NotificationChannel.EMAIL: self.email_enabled,
            NotificationChannel.CALL: self.call_enabled,
        }
        return [channel for channel, enabled in flags.items() if enabled]
    
    def to_dict(self) -> Dict[str, Any]:
        """Convert config to dictionary for storage/API"""
        return asdict(self)
    
    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'EscalationEngineConfig':
        """Create config from dictionary"""
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            raise ValueError(f"Unknown escalation config keys: {sorted(unknown)}")
        return cls(**data)


class EscalationConfigService:
    """Service for managing escalation engine configuration"""
    
    def __init__(self, config: EscalationEngineConfig = None):
        self._config = config or EscalationEngineConfig()
    
    @property
    def config(self) -> EscalationEngineConfig:
        """Get current configuration"""
        return self._config
    
    def update_config(self, updates: Dict[str, Any]) -> EscalationEngineConfig:
        """Update configuration with new values"""
        current_dict = self._config.to_dict()
        current_dict.update(updates)
        self._config = EscalationEngineConfig.from_dict(current_dict)
        logger.info(f"Escalation engine config updated: {list(updates.keys())}")
        return self._config
    
    def reset_to_defaults(self) -> EscalationEngineConfig:
        """Reset to default configuration"""
        self._config = EscalationEngineConfig()
        logger.info("Escalation engine config reset to defaults")
        return self._config
    
    def get_tier_wait(self, level: int) -> timedelta:
        """How long an alert sits at a level before it moves to the next"""
        if level == 0:
            return timedelta(minutes=self._config.tier1_wait_minutes)
        return timedelta(minutes=self._config.tier2_wait_minutes)
    
    def get_caregiver_timeout(self) -> timedelta:
        """Response window for a single caregiver notification"""
        return timedelta(minutes=self._config.caregiver_escalation_timeout_minutes)
