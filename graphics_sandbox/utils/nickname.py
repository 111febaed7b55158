"""Human-friendly session labels."""

import random

ADJECTIVES = (
    "Swift", "Bright", "Bold", "Quick", "Sharp", "Clever", "Wise", "Brave",
    "Cool", "Prime", "Super", "Mega", "Ultra", "Hyper", "Turbo", "Rapid",
)

NOUNS = (
    "Coder", "Hacker", "Dev", "Builder", "Maker", "Creator", "Wizard", "Guru",
    "Ninja", "Master", "Expert", "Pro", "Artist", "Genius", "Champion", "Hero",
)


def generate_nickname(rng: random.Random = None) -> str:
    """Return a label like ``SwiftCoder42``. Not unique."""
    rng = rng or random
    return f"{rng.choice(ADJECTIVES)}{rng.choice(NOUNS)}{rng.randrange(100)}"
