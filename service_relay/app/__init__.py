"""
Event Relay service package.

Holds one long-lived Server-Sent Events connection to the upstream API,
filters pushed events against the locally configured reward ID and fans
matches out to registered consumer endpoints. Key modules include:

- app.main: FastAPI app, control and settings endpoints
- app.config: Durable settings store with change notifications
- app.auth: Credential provider
- app.stream: Upstream transport, connection state machine, event filter
- app.delivery: Consumer target registry and fan-out router
- app.control: Start/stop/status command surface
- app.status: Read-only status reporting
"""
