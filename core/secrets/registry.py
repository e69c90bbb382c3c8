"""Backend registry with decorator pattern.

Backends are keyed by the store provider dataclass they serve, so resolving
a store is a type lookup on its (tagged-union) provider.
"""

BACKENDS = {}


def register_backend(provider_type: type):
    """
    Decorator to register a backend class for a provider type.

    Usage:
        @register_backend(VaultProvider)
        class VaultBackend(SecretBackend):
            ...
    """

    def decorator(cls):
        if provider_type in BACKENDS and BACKENDS[provider_type] is not cls:
            raise ValueError(
                f"Backend for {provider_type.__name__} already registered: "
                f"{BACKENDS[provider_type].__name__}"
            )
        BACKENDS[provider_type] = cls
        return cls

    return decorator


def get_backend(provider_type: type):
    """
    Get backend class by provider type.

    Args:
        provider_type: Provider dataclass (VaultProvider, ...)

    Returns:
        Backend class (not instance)

    Raises:
        KeyError: If no backend is registered for the type
    """
    if provider_type not in BACKENDS:
        available = ", ".join(t.__name__ for t in BACKENDS) or "none"
        raise KeyError(
            f"Unknown backend for provider: '{getattr(provider_type, '__name__', provider_type)}'. "
            f"Available: {available}"
        )
    return BACKENDS[provider_type]
