"""Abstract interface for sources of previously posted review comments."""

from typing import Protocol

from ..models.comment import ExistingComment


class CommentSource(Protocol):
    """Supplies the review comments posted by earlier runs.

    Implementations talk to a hosting provider; the reconciler only needs
    the comment records.
    """

    async def fetch_existing_comments(self) -> list[ExistingComment]:
        """
        Fetch existing review comments for the current change set.

        Returns:
            Comments with location, parsed title/description and thread state
        """
        ...
