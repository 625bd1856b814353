"""accountlink - link identity-provider accounts to platform users with OAuth2 + PKCE."""
