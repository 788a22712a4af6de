"""Transport bindings: contract, registry and the bundled MQTT binding."""
