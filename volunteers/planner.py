"""
Purpose: Pick the best courier for one task (genetic search over the pool).
What it does:

population = min(20, 2 x pool) couriers drawn from the pool
for 50 generations:
   - evaluate fitness of every individual
   - keep the fittest unchanged (elitism)
   - fill the rest: two tournament winners (size 3), child = one of them at
     random, with probability 0.1 replaced by a random pool member (mutation)
return the fittest courier seen

Pool of 0 -> NoAvailableVolunteersError. Pool of 1 -> returned as is, no search.

Rule: the returned courier is always a member of the input pool. Fitness is
memoized per courier for one search, and a courier whose fitness cannot be
computed is treated as unfit (skipped), not as an error for the whole search.
"""

from __future__ import annotations

import logging
import random
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Tuple

from donations.models import Urgency

from .fitness import VolunteerFitnessModel
from .models import Volunteer
from .policy import VolunteerPolicy, default_volunteer_policy

logger = logging.getLogger(__name__)

LatLon = Tuple[float, float]

UNFIT = float("-inf")


class NoAvailableVolunteersError(Exception):
    """Raised when there is no courier to choose from."""
    pass


class NoSuitableVolunteerError(NoAvailableVolunteersError):
    """Raised when couriers exist but none could be evaluated."""
    pass


@dataclass(frozen=True)
class PlanResult:
    volunteer: Volunteer
    # None when the pool had a single courier and no search ran
    fitness: Optional[float]
    searched: bool
    generations_run: int = 0
    evaluations: int = 0


class VolunteerAssignmentPlanner:
    def __init__(
        self,
        fitness_model: Optional[VolunteerFitnessModel] = None,
        policy: Optional[VolunteerPolicy] = None,
        rng: Optional[random.Random] = None,
    ):
        self.policy = policy or default_volunteer_policy()
        self.fitness_model = fitness_model or VolunteerFitnessModel(policy=self.policy)
        self.rng = rng or random.Random()

    def plan(
        self,
        pool: Iterable[Volunteer],
        pickup: Optional[LatLon],
        urgency: Urgency = Urgency.NORMAL,
        exclude_ids: Iterable[str] = (),
    ) -> PlanResult:
        candidates = self._unique_pool(pool, exclude_ids)

        if not candidates:
            raise NoAvailableVolunteersError("No available couriers")

        if len(candidates) == 1:
            return PlanResult(volunteer=candidates[0], fitness=None, searched=False)

        fitness_cache: Dict[str, float] = {}

        def evaluate(volunteer: Volunteer) -> float:
            if volunteer.id not in fitness_cache:
                try:
                    fitness_cache[volunteer.id] = self.fitness_model.fitness(volunteer, pickup, urgency)
                except Exception:
                    logger.exception("Fitness evaluation failed for volunteer %s", volunteer.id)
                    fitness_cache[volunteer.id] = UNFIT
            return fitness_cache[volunteer.id]

        population_size = min(self.policy.max_population, 2 * len(candidates))
        population = [self.rng.choice(candidates) for _ in range(population_size)]

        best: Optional[Volunteer] = None
        best_fitness = UNFIT

        for _ in range(self.policy.generations):
            scores = [evaluate(individual) for individual in population]

            elite_index = max(range(population_size), key=lambda i: scores[i])
            if best is None or scores[elite_index] > best_fitness:
                best = population[elite_index]
                best_fitness = scores[elite_index]

            next_population = [population[elite_index]]
            while len(next_population) < population_size:
                first = self._tournament(population, scores)
                second = self._tournament(population, scores)
                child = first if self.rng.random() < 0.5 else second
                if self.rng.random() < self.policy.mutation_rate:
                    child = self.rng.choice(candidates)
                next_population.append(child)

            population = next_population

        # children of the last generation were never scored
        for individual in population:
            score = evaluate(individual)
            if score > best_fitness:
                best, best_fitness = individual, score

        if best is None or best_fitness == UNFIT:
            raise NoSuitableVolunteerError(f"No suitable courier among {len(candidates)} candidates")

        logger.info(
            "Planner picked volunteer %s (fitness %.3f) from %d candidates",
            best.id, best_fitness, len(candidates),
        )
        return PlanResult(
            volunteer=best,
            fitness=best_fitness,
            searched=True,
            generations_run=self.policy.generations,
            evaluations=len(fitness_cache),
        )

    def select(
        self,
        pool: Iterable[Volunteer],
        pickup: Optional[LatLon],
        urgency: Urgency = Urgency.NORMAL,
    ) -> Volunteer:
        return self.plan(pool, pickup, urgency).volunteer

    def _tournament(self, population: List[Volunteer], scores: List[float]) -> Volunteer:
        contestants = [self.rng.randrange(len(population)) for _ in range(self.policy.tournament_size)]
        winner = max(contestants, key=lambda i: scores[i])
        return population[winner]

    @staticmethod
    def _unique_pool(pool: Iterable[Volunteer], exclude_ids: Iterable[str]) -> List[Volunteer]:
        excluded = set(exclude_ids)
        seen = set()
        unique: List[Volunteer] = []
        for volunteer in pool:
            if volunteer.id in excluded or volunteer.id in seen:
                continue
            seen.add(volunteer.id)
            unique.append(volunteer)
        return unique
