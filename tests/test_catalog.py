"""Tests for CourseCatalog."""

import pytest

from course_allocation.catalog import CategoryDetails, CourseCatalog
from course_allocation.exceptions import NotFoundError
from course_allocation.models import CourseCategory, CourseCategoryLevel


@pytest.fixture
def catalog(db):
    return CourseCatalog()


@pytest.mark.django_db
class TestCategoryDetails:
    """Tests for get_category_details."""

    def test_returns_snapshot_values(self, catalog, category):
        details = catalog.get_category_details(category.pk)

        assert details == CategoryDetails(
            id=category.pk,
            name="Scaffolding Inspection",
            duration_days=3,
            max_participants=10,
            enable_lpo_integration=True,
        )

    def test_unknown_category(self, catalog):
        with pytest.raises(NotFoundError) as exc_info:
            catalog.get_category_details(999)
        assert exc_info.value.identifier == 999

    def test_inactive_category_not_found(self, catalog, category):
        category.is_active = False
        category.save()

        with pytest.raises(NotFoundError):
            catalog.get_category_details(category.pk)

    def test_soft_deleted_category_not_found(self, catalog, category):
        category.delete()

        with pytest.raises(NotFoundError):
            catalog.get_category_details(category.pk)
        assert CourseCategory.all_objects.filter(pk=category.pk).exists()


@pytest.mark.django_db
class TestLevels:
    """Tests for level lookups and the prerequisite chain."""

    def test_level_must_belong_to_category(self, catalog, category, level1):
        other = CourseCategory.objects.create(name="Rigging", duration_days=2, max_participants=8)

        assert catalog.get_level_details(category.pk, level1.pk) == level1
        with pytest.raises(NotFoundError):
            catalog.get_level_details(other.pk, level1.pk)

    def test_level_defaults(self, level1, level2):
        assert level1.level_name == "Level 1"
        assert level1.requires_prerequisite is False
        assert level2.requires_prerequisite is True
        assert level2.prerequisite_level_number == 1

    def test_levels_ordered(self, catalog, category, level2, level1):
        assert [lvl.level_number for lvl in catalog.get_levels(category.pk)] == [1, 2]

    def test_prerequisite_chain(self, catalog, level1, level2):
        assert catalog.get_prerequisite(level2) == level1
        assert catalog.get_prerequisite(level1) is None

    def test_explicit_prerequisite_kept(self, category):
        level = CourseCategoryLevel.objects.create(
            category=category,
            level_number=3,
            prerequisite_level_number=1,
            requires_prerequisite=True,
        )
        assert level.prerequisite_level_number == 1
