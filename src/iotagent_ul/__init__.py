"""
UL2.0 IoT Agent: Ultralight 2.0 protocol layer for an IoT agent.

Decodes measure and command-result payloads from devices, encodes commands
for them, and fans device lifecycle events out to the transport bindings.
"""
