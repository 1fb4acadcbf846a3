"""Authentication error types."""


class AuthError(Exception):
    """Base class for credential management failures."""

    code = "auth_error"


class InvalidTokenError(AuthError):
    """Token is malformed, unknown, expired or signed with another key."""

    code = "invalid_token"


class LastAuthMethodError(AuthError):
    """Unlinking would leave the user with no way to sign in."""

    code = "last_auth_method"

    def __init__(self, user_id: str, provider: str):
        self.user_id = user_id
        self.provider = provider
        super().__init__(
            f"Cannot unlink {provider}: it is the last sign-in method for the account"
        )


class AlreadyLinkedError(AuthError):
    """The user already has an account linked for this provider."""

    code = "already_linked"

    def __init__(self, user_id: str, provider: str):
        self.user_id = user_id
        self.provider = provider
        super().__init__(f"A {provider} account is already linked")


class LinkedToOtherUserError(AuthError):
    """The provider account is linked to a different user."""

    code = "linked_to_other"

    def __init__(self, provider: str):
        self.provider = provider
        super().__init__(f"This {provider} account is linked to another user")


class OAuthAccountNotFoundError(AuthError):
    code = "not_linked"

    def __init__(self, provider: str):
        self.provider = provider
        super().__init__(f"No {provider} account is linked")


class InvalidPermissionError(AuthError):
    code = "invalid_permission"

    def __init__(self, permission: str):
        self.permission = permission
        super().__init__(f"Unknown API token permission: {permission}")


class EmailTakenError(AuthError):
    code = "email_taken"

    def __init__(self):
        super().__init__("An account with this email already exists")


class InvalidCredentialsError(AuthError):
    """Unknown email or wrong password; the two are not distinguished."""

    code = "invalid_credentials"

    def __init__(self):
        super().__init__("Invalid email or password")
