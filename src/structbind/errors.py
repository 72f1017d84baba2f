class BindingError(ValueError):
    """Base class for failures raised while building or using bindings."""


class InvalidLength(BindingError):
    """A negative, non-integral or overflowing element count."""


class UnresolvedPath(BindingError):
    """A field path that does not name a member of the layout it is applied to."""


class NameCollisionExhausted(BindingError):
    pass
