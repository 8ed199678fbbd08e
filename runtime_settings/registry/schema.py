"""Schema registry of declared runtime settings.

Built once at startup from every module's declaration, then frozen. The
runtime service and the bootstrap reconciler only read it.
"""

from collections.abc import Iterable, Iterator, Mapping
from typing import Any

from runtime_settings.domain.config import (
    Branch,
    ConfigDescriptor,
    Leaf,
    ModuleDeclaration,
    Node,
)
from runtime_settings.logger.logger import get_logger
from runtime_settings.logger.types import Category, param
from runtime_settings.runtime.errors import RegistryFrozenError


class SchemaRegistry:
    """Catalog of ConfigDescriptor keyed by setting id."""

    def __init__(self) -> None:
        self._descriptors: dict[str, ConfigDescriptor] = {}
        self._frozen = False
        self.logger = get_logger().with_category(Category.REGISTRY)

    @classmethod
    def collect(cls, declarations: Iterable[ModuleDeclaration]) -> "SchemaRegistry":
        """
        Build a frozen registry from module declarations.

        Args:
            declarations: One declaration per server module

        Returns:
            Frozen SchemaRegistry
        """
        registry = cls()
        for declaration in declarations:
            registry.register(declaration.module, declaration.tree)
        registry.freeze()
        return registry

    def register(self, module: str, tree: Branch | Mapping[str, Node]) -> list[ConfigDescriptor]:
        """
        Register every leaf of ``tree`` under ``module``.

        Branch names are joined into dotted keys; each leaf becomes a
        descriptor with id ``module/dotted.key``. Re-registering an id
        overwrites its descriptor.

        Args:
            module: Module name (e.g. ``auth``)
            tree: Root branch, or its children mapping

        Returns:
            Descriptors created by this call

        Raises:
            RegistryFrozenError: If called after freeze()
            TypeError: If a node is neither Leaf nor Branch
        """
        if self._frozen:
            raise RegistryFrozenError(
                f"Cannot register module {module!r}: schema registry is frozen"
            )

        children = tree.children if isinstance(tree, Branch) else tree
        created = [
            ConfigDescriptor(
                id=f"{module}/{key}",
                module=module,
                key=key,
                description=leaf.description,
                default=leaf.default,
            )
            for key, leaf in self._flatten(children, parent="")
        ]

        for descriptor in created:
            self._descriptors[descriptor.id] = descriptor

        self.logger.debug(
            f"Registered runtime settings for module {module}",
            param("module", module),
            param("count", len(created)),
        )
        return created

    def _flatten(self, children: Mapping[str, Node], parent: str) -> Iterator[tuple[str, Leaf]]:
        for name, node in children.items():
            key = f"{parent}.{name}" if parent else name
            if isinstance(node, Leaf):
                yield key, node
            elif isinstance(node, Branch):
                yield from self._flatten(node.children, key)
            else:
                raise TypeError(
                    f"Runtime setting node {key!r} must be Leaf or Branch, "
                    f"got {type(node).__name__}"
                )

    def freeze(self) -> None:
        """End the registration phase. Safe to call more than once."""
        if not self._frozen:
            self._frozen = True
            self.logger.info(
                "Schema registry frozen",
                param("settings", len(self._descriptors)),
            )

    @property
    def frozen(self) -> bool:
        return self._frozen

    def get(self, setting_id: str) -> ConfigDescriptor | None:
        return self._descriptors.get(setting_id)

    def ids(self) -> set[str]:
        return set(self._descriptors)

    def descriptors(self, module: str | None = None) -> list[ConfigDescriptor]:
        """Descriptors ordered by id, optionally for one module."""
        return [
            descriptor
            for setting_id, descriptor in sorted(self._descriptors.items())
            if module is None or descriptor.module == module
        ]

    def defaults(self) -> dict[str, Any]:
        """Setting id -> default value."""
        return {setting_id: d.default for setting_id, d in self._descriptors.items()}

    def __contains__(self, setting_id: object) -> bool:
        return setting_id in self._descriptors

    def __len__(self) -> int:
        return len(self._descriptors)
