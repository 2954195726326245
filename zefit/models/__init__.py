from . import member, payment, scheduling, content  # noqa: F401 (register models)
