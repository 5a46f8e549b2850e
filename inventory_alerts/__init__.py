"""
Inventory Alerts - alert lifecycle, rule engine and escalations.

Sits above inventory_kernel:
- Threshold alerts arrive from the ledger through the ThresholdAlertSink
- Rule-driven alerts come from the polling AlertRuleEngine
- Actions fan out through the NotificationDispatcher boundary
- Escalations are persisted, timer-armed and cancelled on acknowledgement
"""
