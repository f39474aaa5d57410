from . import (
    contacts,
    drafter,
    job_search,
    sender,
    tailor,
)

__all__ = [
    "contacts",
    "drafter",
    "job_search",
    "sender",
    "tailor",
]
