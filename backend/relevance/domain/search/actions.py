"""Command-palette actions suggested from query keywords."""

from __future__ import annotations

from dataclasses import dataclass

from relevance.domain.search import schemas
from relevance.domain.search.fuzzy import fuzzy_match

STRONG_SCORE = 0.9
WEAK_SCORE = 0.5


@dataclass(frozen=True, slots=True)
class ActionDefinition:
	action_id: str
	action: str
	title: str
	subtitle: str
	icon: str
	keyword: str
	triggers: tuple[str, ...]

	def triggered_by(self, lowered_query: str) -> bool:
		return any(trigger in lowered_query for trigger in self.triggers)


CATALOG: tuple[ActionDefinition, ...] = (
	ActionDefinition(
		action_id="create-item",
		action="create",
		title="Create a new item",
		subtitle="Add something to the collection",
		icon="plus",
		keyword="create",
		triggers=("create", "new", "add"),
	),
	ActionDefinition(
		action_id="view-profile",
		action="profile",
		title="View your profile",
		subtitle="See your items and stats",
		icon="user",
		keyword="profile",
		triggers=("profile", "my", "account"),
	),
	ActionDefinition(
		action_id="open-settings",
		action="settings",
		title="Open settings",
		subtitle="Manage your account preferences",
		icon="settings",
		keyword="settings",
		triggers=("setting", "preference", "config"),
	),
)


def suggest_actions(query: str, *, limit: int | None = None) -> list[schemas.ActionResult]:
	"""Actions whose trigger words appear in the query, in catalog order."""

	lowered = (query or "").lower()
	if not lowered.strip():
		return []
	results: list[schemas.ActionResult] = []
	for definition in CATALOG:
		if limit is not None and len(results) >= limit:
			break
		if not definition.triggered_by(lowered):
			continue
		results.append(
			schemas.ActionResult(
				id=definition.action_id,
				title=definition.title,
				subtitle=definition.subtitle,
				action=definition.action,
				icon=definition.icon,
				score=STRONG_SCORE if fuzzy_match(definition.keyword, lowered) else WEAK_SCORE,
			)
		)
	return results
