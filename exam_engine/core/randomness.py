import random


def secure_rng() -> random.Random:
    """Non-seedable OS-backed source used for question sampling and display shuffles.

    Services accept any ``random.Random`` so tests can pass a seeded instance.
    """
    return random.SystemRandom()
