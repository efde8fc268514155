"""Core provisioning logic: secrets, vault, inventory, pre-flight and deploy."""
