"""Runtime settings declared by the server's modules."""

from runtime_settings.domain.config import Branch, Leaf, ModuleDeclaration

AUTH = ModuleDeclaration(
    module="auth",
    tree=Branch(
        {
            "password": Branch(
                {
                    "min": Leaf(description="The minimum length of user password", default=8),
                    "max": Leaf(description="The maximum length of user password", default=32),
                }
            ),
        }
    ),
)


def default_declarations() -> list[ModuleDeclaration]:
    """Declarations of every module shipped with the server."""
    return [AUTH]
