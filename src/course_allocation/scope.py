"""Center context: who is asking, and what they may see or create.

Every scoped read and every booking write takes a ``CenterContext``
explicitly. Nothing is read from thread-locals or request state.
"""

from dataclasses import dataclass


@dataclass(frozen=True)
class CenterContext:
    """Scoping identity for a request.

    Attributes:
        center_id: The acting center's primary key
        sees_all_centers: True for the head center; branch scope sees only
            records it created
        can_create_domestic: May create domestic bookings
        can_create_international: May create international bookings
        can_access_lpo: May read and write LPO orders
        user: Free-form identifier of the acting user, stored on created rows
    """

    center_id: int
    sees_all_centers: bool = False
    can_create_domestic: bool = False
    can_create_international: bool = True
    can_access_lpo: bool = False
    user: str = ''

    @classmethod
    def for_center(cls, center, user: str = '') -> 'CenterContext':
        """Build the context from a Center row and its capability flags."""
        is_head = center.is_head
        return cls(
            center_id=center.pk,
            sees_all_centers=is_head,
            can_create_domestic=is_head or center.can_create_domestic_courses,
            can_create_international=center.can_create_international_courses,
            can_access_lpo=is_head,
            user=user,
        )

    @property
    def is_head(self) -> bool:
        return self.sees_all_centers
