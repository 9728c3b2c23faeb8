"""Payment provider registry"""
from payhook.core.errors import ProviderNotConfigured
from payhook.services.providers.base import PaymentProvider
from payhook.services.providers.stripe_provider import StripeProvider


def _build_stripe(settings) -> PaymentProvider:
    return StripeProvider(
        api_key=settings.STRIPE_SECRET_KEY,
        webhook_secret=settings.STRIPE_WEBHOOK_SECRET,
        api_version=settings.STRIPE_API_VERSION,
    )


PROVIDER_FACTORIES = {
    "stripe": _build_stripe,
}


def build_provider(name: str, settings) -> PaymentProvider:
    """Instantiate the provider registered under ``name``"""
    factory = PROVIDER_FACTORIES.get((name or "").lower())
    if factory is None:
        raise ProviderNotConfigured(f"Unknown payment provider: {name!r}")
    return factory(settings)
