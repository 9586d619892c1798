"""
Hierarchical container for named datastore instances.

The container owns every datastore registered in it and every child
container created from it:
- Registration: singleton (reject duplicates) or transient (replace)
- Construction: eager (stored as is) or lazy (resolved through a factory)
- Lifecycle hooks: before_create, after_create, on_destroy
- Scoping: resolve() searches locally, then children depth first

Invariants:
    - Registration and unregistration only ever touch the local container
    - A rejected singleton registration leaves the first instance in place
    - destroy() always empties the container and its children, even when
      teardown hooks fail
    - Hook failures are reported, never rolled back: a failed after_create
      leaves the instance registered
    - destroy() does not disconnect datastores: DataStore has no on_destroy(),
      so engines must be disconnected by the caller or by an on_destroy hook

How to change safely:
    - Containers are constructed and passed explicitly; there is no global
      instance
    - Keep operations synchronous; hooks are plain callables

Example:
    >>> container = DataStoreContainer()
    >>> container.register("users", users_store)
    >>> container.resolve("users").data is users_store
    True
    >>> tenant = container.create_child_container()
    >>> tenant.register("orders", orders_store, ContainerOptions(lazy=True))
    >>> container.resolve("orders").ok
    True
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Hashable, List, Optional

from .errors import AggregateTeardownError, DataStoreError, LifecycleHookError, NotFoundError
from .result import Result

logger = logging.getLogger(__name__)

Hook = Callable[[], Optional[Result[None]]]


@dataclass(frozen=True)
class LifecycleHooks:
    """Lifecycle callbacks for one registration.

    Each hook is called without arguments and must return a Result. A hook
    that returns a failure, returns nothing, or raises fails the step.
    """

    before_create: Optional[Hook] = None
    after_create: Optional[Hook] = None
    on_destroy: Optional[Hook] = None


@dataclass(frozen=True)
class ContainerOptions:
    """Registration options.

    Attributes:
        singleton: Reject a second registration of the same key
        lazy: Resolve through a factory instead of storing the instance
        lifecycle: Lifecycle hooks
    """

    singleton: bool = True
    lazy: bool = False
    lifecycle: LifecycleHooks = field(default_factory=LifecycleHooks)


@dataclass
class RegisteredInstance:
    """A registered datastore and how to hand it out."""

    key: Hashable
    datastore: Any
    options: ContainerOptions
    factory: Optional[Callable[[], Result[Any]]] = None

    def get(self) -> Result[Any]:
        if self.factory is not None:
            return self.factory()
        return Result.success(self.datastore)


def _run_hook(key: Hashable, name: str, hook: Optional[Hook]) -> Result[None]:
    """Run a hook; success when absent."""
    if hook is None:
        return Result.success()
    try:
        outcome = hook()
    except Exception as e:
        outcome = Result.failure(e)
    if outcome is None or not outcome.ok:
        detail = outcome.error if outcome is not None else None
        logger.warning(f"{name} hook failed for '{key}': {detail}")
        return Result.failure(LifecycleHookError(key, name, detail))
    return Result.success()


class DataStoreContainer:
    """Registry of named datastores with lifecycle management and child scopes.

    Thread safety:
        Not thread-safe. Intended to be wired up and torn down from one
        thread or event loop.
    """

    def __init__(self) -> None:
        self._instances: Dict[Hashable, RegisteredInstance] = {}
        self._children: List[DataStoreContainer] = []

    @property
    def children(self) -> List[DataStoreContainer]:
        """Child containers in creation order."""
        return self._children

    def __len__(self) -> int:
        return len(self._instances)

    def __contains__(self, key: Hashable) -> bool:
        return key in self._instances

    def register(
        self,
        key: Hashable,
        datastore: Any,
        options: Optional[ContainerOptions] = None,
    ) -> Result[None]:
        """Register a datastore under a key.

        Args:
            key: Registration key
            datastore: The datastore instance
            options: Registration options (singleton, eager, no hooks by default)

        Returns:
            Success, or a failure when a singleton key is taken or a
            lifecycle hook fails
        """
        options = options or ContainerOptions()
        if options.singleton:
            return self._register_singleton(key, datastore, options)
        return self._register_transient(key, datastore, options)

    def _register_singleton(self, key: Hashable, datastore: Any, options: ContainerOptions) -> Result[None]:
        if key in self._instances:
            return Result.failure(DataStoreError(
                f"Singleton with key '{key}' is already registered.",
                code="ALREADY_REGISTERED",
                details={"key": key},
            ))

        hooks = options.lifecycle
        if options.lazy:
            def factory() -> Result[Any]:
                before = _run_hook(key, "before_create", hooks.before_create)
                if not before.ok:
                    return before
                return Result.success(datastore)

            self._instances[key] = RegisteredInstance(key, datastore, options, factory)
        else:
            before = _run_hook(key, "before_create", hooks.before_create)
            if not before.ok:
                return before
            self._instances[key] = RegisteredInstance(key, datastore, options)

        logger.debug(f"Registered singleton '{key}' (lazy={options.lazy})")
        return _run_hook(key, "after_create", hooks.after_create)

    def _register_transient(self, key: Hashable, datastore: Any, options: ContainerOptions) -> Result[None]:
        hooks = options.lifecycle
        before = _run_hook(key, "before_create", hooks.before_create)
        if not before.ok:
            return before

        if options.lazy:
            self._instances[key] = RegisteredInstance(
                key, datastore, options, lambda: Result.success(datastore)
            )
        else:
            self._instances[key] = RegisteredInstance(key, datastore, options)

        logger.debug(f"Registered transient '{key}' (lazy={options.lazy})")
        return _run_hook(key, "after_create", hooks.after_create)

    def resolve(self, key: Hashable) -> Result[Any]:
        """Find the datastore registered under a key.

        Searches this container first, then each child in creation order,
        depth first. A local lazy registration whose factory fails returns
        that failure.
        """
        registered = self._instances.get(key)
        if registered is not None:
            return registered.get()

        for child in self._children:
            resolved = child.resolve(key)
            if resolved.ok:
                return resolved

        return Result.failure(NotFoundError(f"No instance found for key '{key}'", key=key))

    def unregister(self, key: Hashable) -> Result[None]:
        """Remove a local registration without running any hook."""
        if key not in self._instances:
            return Result.failure(NotFoundError(f"DataStore with key '{key}' not found.", key=key))
        del self._instances[key]
        logger.debug(f"Unregistered '{key}'")
        return Result.success()

    def destroy(self) -> Result[None]:
        """Tear down every instance and child container.

        Runs each registration's on_destroy hook (or the datastore's own
        on_destroy() when no hook was given), destroys children, then clears
        local state. Failures are collected into one AggregateTeardownError.
        """
        errors: List[Any] = []

        for registered in self._instances.values():
            hook = registered.options.lifecycle.on_destroy
            if hook is None:
                own = getattr(registered.datastore, "on_destroy", None)
                hook = own if callable(own) else None
            if hook is None:
                continue
            outcome = _run_hook(registered.key, "on_destroy", hook)
            if not outcome.ok:
                errors.append(outcome.error)

        for child in self._children:
            outcome = child.destroy()
            if not outcome.ok:
                errors.append(outcome.error)

        self._instances.clear()
        self._children.clear()

        if errors:
            logger.warning(f"Container teardown finished with {len(errors)} error(s)")
            return Result.failure(AggregateTeardownError(errors))
        logger.debug("Container destroyed")
        return Result.success()

    def create_child_container(self) -> DataStoreContainer:
        """Create a child container owned by this one."""
        child = DataStoreContainer()
        self._children.append(child)
        return child
