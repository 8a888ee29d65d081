import math
import time

import pytest

from relevance.domain.search import models
from relevance.domain.search.ranking import (
	popularity_factor,
	recency_factor,
	score_item,
	score_tag,
	score_user,
	to_epoch_seconds,
)

NOW = 1_700_000_000.0
DAY = 86_400.0


def test_cat_tower_ranks_above_dog_house():
	cat = models.ItemCandidate(item_id="i1", title="Cat Tower", description="")
	dog = models.ItemCandidate(item_id="i2", title="Dog House", description="")
	assert score_item(cat, "cat", now=NOW) > score_item(dog, "cat", now=NOW)


def test_exact_username_beats_similar_username():
	alice = models.UserCandidate(user_id="u1", username="alice")
	alicia = models.UserCandidate(user_id="u2", username="alicia")
	assert score_user(alice, "alice") > score_user(alicia, "alice")
	assert score_user(alice, "alice") >= models.DEFAULT_WEIGHTS.exact_match


def test_extra_title_occurrence_strictly_increases_score():
	base = models.ItemCandidate(item_id="i1", title="cat toy", description="soft and small")
	repeated = models.ItemCandidate(item_id="i1", title="cat toy cat", description="soft and small")
	assert score_item(repeated, "cat", now=NOW) > score_item(base, "cat", now=NOW)


def test_extra_description_occurrence_increases_score():
	base = models.ItemCandidate(item_id="i1", title="Toy", description="a cat toy")
	repeated = models.ItemCandidate(item_id="i1", title="Toy", description="a cat toy for cat people")
	assert score_item(repeated, "cat", now=NOW) > score_item(base, "cat", now=NOW)


def test_query_with_regex_metacharacters_is_literal():
	item = models.ItemCandidate(item_id="i1", title="c++ c++ guide")
	assert math.isfinite(score_item(item, "c++", now=NOW))
	assert score_item(item, "c++", now=NOW) > score_item(models.ItemCandidate(item_id="i2", title="c++ guide"), "c++", now=NOW)


def test_missing_optional_fields_contribute_nothing():
	bare = models.ItemCandidate(item_id="i1", title="Lamp")
	assert score_item(bare, "zzz", now=NOW) == 0.0
	assert score_user(models.UserCandidate(user_id="u1"), "alice") == 0.0
	assert score_tag(models.TagCandidate(name="misc"), "zzz") == 0.0


def test_empty_query_scores_only_static_signals():
	item = models.ItemCandidate(item_id="i1", title="Lamp", rating=5.0, rating_count=10, created_at=NOW)
	assert score_item(item, "", now=NOW) == pytest.approx(
		models.DEFAULT_WEIGHTS.popularity + models.DEFAULT_WEIGHTS.recency
	)


def test_popularity_and_recency_factors():
	assert popularity_factor(5.0, 10) == 1.0
	assert popularity_factor(5.0, 5) == 0.5
	assert popularity_factor(None, 10) == 0.0
	assert popularity_factor(4.0, 0) == 0.0
	assert recency_factor(NOW, now=NOW) == 1.0
	assert recency_factor(NOW - 400 * DAY, now=NOW) == 0.0
	assert recency_factor(NOW + 10 * DAY, now=NOW) == 1.0
	assert recency_factor(None, now=NOW) == 0.0
	assert recency_factor("not a date", now=NOW) == 0.0


def test_timestamp_formats_are_understood():
	assert to_epoch_seconds(NOW * 1000) == pytest.approx(NOW)
	assert to_epoch_seconds("2024-01-01T00:00:00Z") == pytest.approx(1_704_067_200.0)
	assert to_epoch_seconds("2024-01-01") == pytest.approx(1_704_067_200.0)
	assert to_epoch_seconds(True) is None
	assert to_epoch_seconds("") is None


def test_weights_are_injected_not_global():
	item = models.ItemCandidate(item_id="i1", title="Cat Tower")
	silent = models.DEFAULT_WEIGHTS.merged({"title": 0})
	assert score_item(item, "cat", silent, now=NOW) == 0.0
	assert models.DEFAULT_WEIGHTS.title == 30.0
	with pytest.raises(ValueError):
		models.DEFAULT_WEIGHTS.merged({"bogus": 1.0})


def test_tag_popularity_saturates():
	small = score_tag(models.TagCandidate(name="python", count=10), "python")
	large = score_tag(models.TagCandidate(name="python", count=100), "python")
	huge = score_tag(models.TagCandidate(name="python", count=10_000), "python")
	assert small < large == huge


def test_scores_never_negative_with_odd_inputs():
	item = models.ItemCandidate(
		item_id="i1",
		title="Cat",
		rating=-3.0,
		rating_count=-1,
		created_at=time.time() + 10 * DAY,
	)
	assert score_item(item, "cat") >= 0.0
