"""LLM access package.

Architectural role:
    Provides provider configuration, request-payload construction, transport
    adapters and the shared rate-limit gate used by workflow stages to invoke
    text-generation backends.

Module split:
    - `provider_config`: environment-driven provider, model and quota settings.
    - `service`: message-to-payload adapter exposing `invoke` and `stream`.
    - `client`: provider HTTP transport and response parsing.
    - `rate_limit`: fixed-window request gate keyed by operation name.
"""
