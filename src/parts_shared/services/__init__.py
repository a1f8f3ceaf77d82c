"""Domain services: persistence, payment gateways, workflow and notifications."""
