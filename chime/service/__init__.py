"""
Service layer for Hourly Chime

Wires the pure scheduling engine to the outside world:
- config: Environment-driven configuration dataclasses
- storage: JSON persistence of alarms and reminder sets
- mqtt: paho-mqtt client wrapper
- notifier: MQTT, local asyncio and fan-out notification delivery
- audio / wyoming: Spoken announcements through a Wyoming TTS server
- app: ChimeService, the orchestrator for user actions
"""
