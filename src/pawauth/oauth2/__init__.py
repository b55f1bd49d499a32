# OAuth2 authorization server core: client registry, codes, tokens, PKCE, scopes.
# Created: 2026-03-02
