"""
tests/test_docstore.py -- Unit tests for docstore/: Collection execution of QuerySpecs, writes, and aggregates.

Coverage:
  - find() filters with coerced operators, sorts with tie-breaks, paginates, projects
  - find() caps out-of-range page and limit values instead of overflowing
  - find() rejects unknown, JSON, and secret fields
  - create()/update() run field validation, bump version, map duplicates
  - secret user columns never appear in generic reads
  - Populate loads referenced documents only when asked
  - tour_stats(), monthly_plan(), tours_within(), tour_distances()
"""

import pytest

from core.errors import ValidationError
from core.query import QueryFeatures, QuerySpec, parse_query_params
from docstore import aggregates
from docstore.store import Populate


def _spec(**params):
    return QueryFeatures(parse_query_params(params.items())).build()


@pytest.fixture
def tours(store, tour_body):
    """Three tours used by the filter/sort tests."""
    col = store.tours
    col.create(tour_body("Alpha Coast Trek", price=500, duration=7, difficulty="medium"))
    col.create(tour_body("Bravo Coast Trek", price=500, duration=5, difficulty="difficult"))
    col.create(tour_body("Charlie Coast Trek", price=300, duration=3))
    return col


class TestFind:
    def test_equality_filter(self, tours) -> None:
        """difficulty=medium matches one tour."""
        docs = tours.find(_spec(difficulty="medium"))
        assert [d["name"] for d in docs] == ["Alpha Coast Trek"]

    def test_operator_filter_coerces_strings(self, tours) -> None:
        """String operands are coerced to the column type."""
        params = parse_query_params([("price[gte]", "400"), ("duration[lt]", "7")])
        docs = tours.find(QueryFeatures(params).build())
        assert [d["name"] for d in docs] == ["Bravo Coast Trek"]

    def test_no_filters_returns_all(self, tours) -> None:
        """No filters returns every row."""
        assert len(tours.find(_spec())) == 3

    def test_descending_sort_with_ascending_tie_break(self, tours) -> None:
        """-price,name: highest price first, equal prices ordered by name."""
        docs = tours.find(_spec(sort="-price,name"))
        assert [d["name"] for d in docs] == ["Alpha Coast Trek", "Bravo Coast Trek", "Charlie Coast Trek"]

    def test_default_sort_is_newest_first(self, tours) -> None:
        """Without sort the last created tour comes first."""
        docs = tours.find(_spec())
        assert docs[0]["name"] == "Charlie Coast Trek"

    def test_include_projection_keeps_id(self, tours) -> None:
        """An include list always carries id."""
        docs = tours.find(_spec(fields="name,price"))
        assert set(docs[0]) == {"id", "name", "price"}

    def test_version_hidden_by_default(self, tours) -> None:
        """version is dropped and duration_weeks is derived."""
        doc = tours.find(_spec())[0]
        assert "version" not in doc
        assert doc["duration_weeks"] == pytest.approx(doc["duration"] / 7)

    def test_unknown_field_rejected(self, tours) -> None:
        """Filtering on a missing column is a ValidationError."""
        with pytest.raises(ValidationError):
            tours.find(_spec(colour="red"))

    def test_json_field_rejected(self, tours) -> None:
        """JSON columns cannot be filtered."""
        with pytest.raises(ValidationError):
            tours.find(_spec(guides="1"))

    def test_unsupported_operator_rejected(self, tours) -> None:
        """Only the known comparison operators run."""
        params = parse_query_params([("price[regex]", ".*")])
        with pytest.raises(ValidationError):
            tours.find(QueryFeatures(params).build())

    def test_uncoercible_value_rejected(self, tours) -> None:
        """duration=five cannot become an integer."""
        with pytest.raises(ValidationError):
            tours.find(_spec(duration="five"))

    def test_repeated_filter_is_membership(self, tours) -> None:
        """duration=3&duration=7 matches either value."""
        params = parse_query_params([("duration", "3"), ("duration", "7")])
        docs = tours.find(QueryFeatures(params).build())
        assert sorted(d["duration"] for d in docs) == [3, 7]


class TestPagination:
    @pytest.fixture
    def twelve(self, store, tour_body):
        """Twelve tours with durations 1 to 12."""
        for i in range(1, 13):
            store.tours.create(tour_body(f"Pagination Tour {i:02d}", duration=i))
        return store.tours

    def test_page_two_of_five(self, twelve) -> None:
        """Page 2 with limit 5 returns rows 6 to 10."""
        docs = twelve.find(_spec(sort="duration", page="2", limit="5"))
        assert [d["duration"] for d in docs] == [6, 7, 8, 9, 10]

    def test_last_partial_page(self, twelve) -> None:
        """The last page holds the remainder."""
        docs = twelve.find(_spec(sort="duration", page="3", limit="5"))
        assert [d["duration"] for d in docs] == [11, 12]

    def test_zero_limit_means_no_limit(self, twelve) -> None:
        """limit=0 returns every row."""
        assert len(twelve.find(QuerySpec(limit=0))) == 12

    def test_negative_skip_clamped(self, twelve) -> None:
        """page=0 behaves like page 1."""
        docs = twelve.find(_spec(sort="duration", page="0", limit="5"))
        assert [d["duration"] for d in docs] == [1, 2, 3, 4, 5]

    def test_huge_limit_is_capped(self, twelve) -> None:
        """A limit past the 64-bit range returns every row."""
        docs = twelve.find(_spec(sort="duration", limit="99999999999999999999"))
        assert [d["duration"] for d in docs] == list(range(1, 13))

    def test_huge_page_is_empty(self, twelve) -> None:
        """A page past the 64-bit range returns nothing."""
        assert twelve.find(_spec(page="99999999999999999999")) == []

    def test_huge_page_and_limit_together(self, twelve) -> None:
        """Both values out of range still run the query."""
        assert twelve.find(_spec(page="99999999999999999999", limit="99999999999999999999")) == []


class TestWrites:
    def test_create_sets_slug_created_at_and_version(self, store, tour_body) -> None:
        """create fills slug, created_at and version 0."""
        doc = store.tours.create(tour_body("The Sea Explorer"))
        assert doc["slug"] == "the-sea-explorer"
        assert doc["created_at"]
        assert doc["version"] == 0

    def test_create_validates_fields(self, store, tour_body) -> None:
        """A name under ten characters fails validation."""
        with pytest.raises(ValidationError) as exc_info:
            store.tours.create(tour_body("Short"))
        assert "name" in exc_info.value.message

    def test_discount_must_be_below_price(self, store, tour_body) -> None:
        """price_discount must stay below price."""
        with pytest.raises(ValidationError):
            store.tours.create(tour_body(price=100, price_discount=150))

    def test_duplicate_name_is_duplicate_value(self, store, tour_body) -> None:
        """A unique-constraint hit maps to duplicate_value."""
        store.tours.create(tour_body())
        with pytest.raises(ValidationError) as exc_info:
            store.tours.create(tour_body())
        assert exc_info.value.code == "duplicate_value"

    def test_update_merges_revalidates_and_bumps_version(self, store, tour_body) -> None:
        """update merges into the stored row and revalidates it."""
        doc = store.tours.create(tour_body())
        updated = store.tours.update(doc["id"], {"price": 450})
        assert updated["price"] == 450
        assert updated["name"] == doc["name"]
        assert updated["version"] == 1
        with pytest.raises(ValidationError):
            store.tours.update(doc["id"], {"difficulty": "extreme"})

    def test_update_and_delete_missing(self, store) -> None:
        """Missing ids give None and False."""
        assert store.tours.update(999, {"price": 1}) is None
        assert store.tours.delete(999) is False

    def test_delete(self, store, tour_body) -> None:
        """A deleted tour is gone."""
        doc = store.tours.create(tour_body())
        assert store.tours.delete(doc["id"]) is True
        assert store.tours.get(doc["id"]) is None


class TestUserSecrets:
    def test_generic_reads_never_return_credentials(self, flow, store) -> None:
        """Password and reset columns never leave the store."""
        flow.signup("Secret Keeper", "keeper@example.com", "Passw0rd!", "Passw0rd!")
        doc = store.users.find(_spec(fields="name,password,active"))[0]
        assert set(doc) == {"id", "name"}
        full = store.users.get(doc["id"])
        for secret in ("password", "password_changed_at", "password_reset_token", "active"):
            assert secret not in full

    def test_secret_field_filter_rejected(self, store) -> None:
        """Secret columns cannot be filtered on."""
        with pytest.raises(ValidationError):
            store.users.find(_spec(password="x"))

    def test_deactivated_users_out_of_scope(self, flow, store) -> None:
        """Inactive users are invisible to reads."""
        issued = flow.signup("Gone Soon", "gone@example.com", "Passw0rd!", "Passw0rd!")
        flow.users.deactivate(issued.user.id)
        assert store.users.get(issued.user.id) is None
        assert store.users.find(_spec()) == []


class TestPopulate:
    def test_guides_and_reviews_loaded_on_request(self, flow, store, tour_body) -> None:
        """Referenced guides and nested review authors load on request."""
        guide = flow.signup("Guide Person", "guide@example.com", "Passw0rd!", "Passw0rd!", "guide").user
        author = flow.signup("Review Author", "author@example.com", "Passw0rd!", "Passw0rd!").user
        tour = store.tours.create(tour_body(guides=[guide.id]))
        store.reviews.create({"review": "Lovely", "rating": 5, "tour": tour["id"], "user": author.id})

        assert store.tours.get(tour["id"])["guides"] == [guide.id]

        populate = (
            Populate("guides", store.users, fields=("name", "role")),
            Populate(
                "reviews",
                store.reviews,
                local_field="id",
                foreign_field="tour",
                many=True,
                populate=(Populate("user", store.users, fields=("name", "photo")),),
            ),
        )
        doc = store.tours.get(tour["id"], populate=populate)
        assert doc["guides"] == [{"id": guide.id, "name": "Guide Person", "role": "guide"}]
        assert len(doc["reviews"]) == 1
        assert doc["reviews"][0]["user"] == {"id": author.id, "name": "Review Author", "photo": "user.png"}

    def test_many_with_no_matches_is_empty_list(self, store, tour_body) -> None:
        """A to-many populate with no matches is []."""
        tour = store.tours.create(tour_body())
        populate = (Populate("reviews", store.reviews, local_field="id", foreign_field="tour", many=True),)
        assert store.tours.get(tour["id"], populate=populate)["reviews"] == []


class TestAggregates:
    def test_tour_stats_groups_by_difficulty(self, store, tour_body) -> None:
        """Well-rated tours group by difficulty, EASY dropped, cheapest first."""
        store.tours.create(tour_body("Medium Tour Number 1", difficulty="medium", price=400, ratings_average=4.8))
        store.tours.create(tour_body("Medium Tour Number 2", difficulty="medium", price=600, ratings_average=4.6))
        store.tours.create(tour_body("Hard Tour Number One", difficulty="difficult", price=900, ratings_average=4.9))
        store.tours.create(tour_body("Easy Tour Number One", difficulty="easy", price=100, ratings_average=5.0))
        store.tours.create(tour_body("Low Rated Medium Trip", difficulty="medium", price=50, ratings_average=3.0))

        stats = aggregates.tour_stats(store.engine)
        assert [s["difficulty"] for s in stats] == ["MEDIUM", "DIFFICULT"]
        medium = stats[0]
        assert medium["tours_count"] == 2
        assert medium["avg_price"] == pytest.approx(500)
        assert (medium["min_price"], medium["max_price"]) == (400, 600)

    def test_monthly_plan(self, store, tour_body) -> None:
        """Start dates in the year bucket by month."""
        store.tours.create(tour_body("Spring Walk Tour One", start_dates=["2021-03-21", "2021-07-01"]))
        store.tours.create(tour_body("Spring Walk Tour Two", start_dates=["2021-03-05T09:00:00", "2022-03-01"]))
        plan = aggregates.monthly_plan(store.engine, 2021)
        assert [p["month"] for p in plan] == ["March", "July"]
        assert plan[0]["tour_count"] == 2
        assert sorted(plan[0]["tours"]) == ["Spring Walk Tour One", "Spring Walk Tour Two"]

    def test_geo_queries(self, store, tour_body) -> None:
        """Radius search and distance ordering around Los Angeles."""
        # Los Angeles and Miami start points; center near LA.
        store.tours.create(tour_body("West Coast Explorer", start_location={"coordinates": [-118.24, 34.05]}))
        store.tours.create(tour_body("East Coast Explorer", start_location={"coordinates": [-80.19, 25.76]}))
        store.tours.create(tour_body("Nowhere In Particular"))

        near = aggregates.tours_within(store.engine, 34.11, -118.11, 100, "mi")
        assert [t["name"] for t in near] == ["West Coast Explorer"]

        distances = aggregates.tour_distances(store.engine, 34.11, -118.11, "km")
        assert [d["name"] for d in distances] == ["West Coast Explorer", "East Coast Explorer"]
        assert distances[1]["distance"] > 3000

    def test_bad_unit_rejected(self, store) -> None:
        """Units other than mi and km are rejected."""
        with pytest.raises(ValidationError):
            aggregates.tour_distances(store.engine, 0, 0, "furlong")
