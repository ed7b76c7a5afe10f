from recipes import compress, convert, document, effects, resize
from recipes.base import ToolRecipe
from exceptions import UnknownToolError


class RecipeRegistry:
    """Tool id -> recipe table, filled once at import and read-only afterwards."""

    def __init__(self):
        self._recipes: dict[str, ToolRecipe] = {}

    def register(self, recipe: ToolRecipe) -> None:
        if recipe.id in self._recipes:
            raise ValueError(f"Duplicate tool id '{recipe.id}'")
        self._recipes[recipe.id] = recipe

    def get(self, tool_id: str) -> ToolRecipe:
        try:
            return self._recipes[tool_id]
        except KeyError:
            raise UnknownToolError(f"Unknown tool '{tool_id}'", tool=tool_id) from None

    def __contains__(self, tool_id: str) -> bool:
        return tool_id in self._recipes

    def __len__(self) -> int:
        return len(self._recipes)

    def ids(self) -> list[str]:
        return sorted(self._recipes)

    def families(self) -> dict[str, list[str]]:
        grouped: dict[str, list[str]] = {}
        for recipe in self._recipes.values():
            grouped.setdefault(recipe.family.value, []).append(recipe.id)
        return {family: sorted(ids) for family, ids in sorted(grouped.items())}


def build_registry() -> RecipeRegistry:
    registry = RecipeRegistry()
    for module in (resize, compress, convert, effects, document):
        for recipe in module.RECIPES:
            registry.register(recipe)
    return registry


REGISTRY = build_registry()


def get_recipe(tool_id: str) -> ToolRecipe:
    return REGISTRY.get(tool_id)
