"""Stripe webhook intake: signature check, dispatch, order fulfillment.

Nothing is imported here so that importing a submodule never builds
settings or clients as a side effect; import from the submodules directly,
e.g. `from .routes import router`.
"""
