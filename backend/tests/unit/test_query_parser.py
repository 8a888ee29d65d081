from datetime import date

from relevance.domain.search.query import parse_search_query


def test_plain_terms_pass_through():
	parsed = parse_search_query("Cat  Tower")
	assert parsed.terms == ["Cat", "Tower"]
	assert parsed.search_text == "cat tower"
	assert not parsed.is_empty()


def test_phrases_exclusions_and_tags():
	parsed = parse_search_query('"cat tower" -dog -"dog house" #pets tag:wood')
	assert parsed.exact_phrases == ["cat tower"]
	assert parsed.excluded_terms == ["dog", "dog house"]
	assert parsed.tags == ["pets", "wood"]
	assert parsed.terms == []
	assert parsed.search_text == "cat tower"


def test_user_rating_and_date_operators():
	parsed = parse_search_query("shelf by:alice rating:>4 after:2024-01-01 before:2024-06-30")
	assert parsed.terms == ["shelf"]
	assert parsed.filters.user == "alice"
	assert parsed.filters.min_rating == 4.0
	assert parsed.filters.max_rating is None
	assert parsed.filters.date_after == date(2024, 1, 1)
	assert parsed.filters.date_before == date(2024, 6, 30)


def test_rating_forms():
	assert parse_search_query("rating:<2").filters.max_rating == 2.0
	ranged = parse_search_query("rating:3-4.5").filters
	assert (ranged.min_rating, ranged.max_rating) == (3.0, 4.5)
	exact = parse_search_query("rating:5").filters
	assert (exact.min_rating, exact.max_rating) == (5.0, 5.0)


def test_malformed_operators_become_terms():
	parsed = parse_search_query("rating:lots after:yesterday user: # - color:red")
	assert parsed.terms == ["rating:lots", "after:yesterday", "user:", "#", "-", "color:red"]
	assert parsed.filters.min_rating is None
	assert parsed.filters.date_after is None


def test_empty_input():
	for raw in (None, "", '""'):
		parsed = parse_search_query(raw)
		assert parsed.is_empty()
		assert parsed.search_text == ""
	assert parse_search_query("-dog").is_empty()
