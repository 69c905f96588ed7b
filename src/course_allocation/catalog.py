"""Read-only lookup of course category and level metadata."""

from dataclasses import dataclass

from .exceptions import NotFoundError
from .models import CourseCategory, CourseCategoryLevel


@dataclass(frozen=True)
class CategoryDetails:
    """The category values a booking snapshots at creation time."""

    id: int
    name: str
    duration_days: int
    max_participants: int
    enable_lpo_integration: bool = True


class CourseCatalog:
    """Category and level lookups. Never writes."""

    def __init__(self, using: str = 'default'):
        self.using = using

    def _categories(self):
        return CourseCategory.objects.using(self.using).filter(is_active=True)

    def _levels(self):
        return CourseCategoryLevel.objects.using(self.using).filter(is_active=True)

    def get_category(self, category_id) -> CourseCategory:
        try:
            return self._categories().get(pk=category_id)
        except CourseCategory.DoesNotExist:
            raise NotFoundError('Course category', category_id)

    def get_category_details(self, category_id) -> CategoryDetails:
        category = self.get_category(category_id)
        return CategoryDetails(
            id=category.pk,
            name=category.name,
            duration_days=category.duration_days,
            max_participants=category.max_participants,
            enable_lpo_integration=category.enable_lpo_integration,
        )

    def get_level_details(self, category_id, level_id) -> CourseCategoryLevel:
        """Return the level, which must belong to the given category."""
        try:
            return self._levels().select_related('category').get(
                pk=level_id,
                category_id=category_id,
            )
        except CourseCategoryLevel.DoesNotExist:
            raise NotFoundError('Course level', level_id)

    def get_levels(self, category_id) -> list[CourseCategoryLevel]:
        self.get_category(category_id)
        return list(self._levels().filter(category_id=category_id).order_by('level_number'))

    def get_prerequisite(self, level: CourseCategoryLevel) -> CourseCategoryLevel | None:
        """Level a trainee must hold before taking ``level``, if any."""
        if not level.requires_prerequisite or not level.prerequisite_level_number:
            return None
        return (
            self._levels()
            .filter(
                category_id=level.category_id,
                level_number=level.prerequisite_level_number,
            )
            .first()
        )
