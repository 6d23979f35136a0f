"""agegate -- third-party age verification over OAuth 2.0 authorization code + PKCE.

An :class:`~agegate.flow.AgeVerifier` opens the identity provider's login
page, waits for the authorization code to come back through a
:class:`~agegate.channel.MessageChannel`, exchanges it for an access token
at the relying party's backend proxy and fetches the user's age-tier flags
(16+, 18+, 21+) with that token.

Typical usage::

    from agegate.flow import AgeVerifier
    from agegate.models import ClientConfig

    verifier = AgeVerifier(ClientConfig(client_id="demo-client-123"))
    result = await verifier.start_verification()
    if result.ok and await verifier.is_verified(18):
        show_content()

The ``agegate`` console script wraps the same flow with a loopback
callback server and the system browser.

Modules:
    flow: The orchestrator and its state machine.
    pkce: Code verifier, challenge and state generation.
    popup: Authorization window lifecycle.
    channel: Inbound authorization message channel.
    callback_server: Loopback redirect receiver feeding the channel.
    client: Backend HTTP clients (token exchange, verification).
    models: Pydantic models shared across the package.
    config: XDG-aware configuration and precedence resolution.
    token_store: Access token persistence.
    exceptions: Exception hierarchy with exit-code mapping.
    output: stdout/stderr formatting system with Rich support.
"""

__version__ = "0.1.0"
