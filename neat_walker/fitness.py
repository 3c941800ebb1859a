"""
Gait shaping: turns a physics trajectory into a scalar fitness.

GaitTracker accumulates an EpisodeRecord from successive body states;
score_episode converts the record into a FitnessBreakdown.
"""

from dataclasses import asdict, dataclass
from typing import Dict, Optional, Sequence

from .body import ARM_JOINTS, JOINT_ORDER, BodyState, clamp, normalize_angle
from .config import FitnessConfig

DEFAULT_FITNESS = FitnessConfig()

# Gait tracking constants.
JOINT_LIMIT_EDGE = 0.12
PLANTED_SPEED = 0.1
CLEARANCE_MIN = 0.04
CLEARANCE_MAX = 0.18
CLEARANCE_MAX_COM_RISE = 0.25
JUMP_HEIGHT_MARGIN = 0.15
MIN_SWING_SECONDS = 0.08
MIN_STRIDE_SECONDS = 0.14
MIN_STEP_PROGRESS = 0.05
STEP_LENGTH_OFFSET = 0.02
MAX_STEP_LENGTH = 0.6

ARM_OUTPUTS = tuple(JOINT_ORDER.index(name) for name in ARM_JOINTS)


@dataclass
class EpisodeRecord:
    """Everything measured about one evaluation episode."""

    distance: float = 0.0
    step_count: int = 0
    step_length_sum: float = 0.0
    effective_step_count: int = 0
    effective_step_length_sum: float = 0.0
    slip_cost: float = 0.0
    swing_clearance_score: float = 0.0
    survived: float = 0.0
    max_survival_time: float = 25.0
    fallen: bool = False
    energy_cost: float = 0.0
    arm_actuation_cost: float = 0.0
    joint_speed_cost: float = 0.0
    joint_limit_cost: float = 0.0
    torso_tilt_cost: float = 0.0
    torso_spin_cost: float = 0.0
    leg_ground_time: float = 0.0
    air_time: float = 0.0
    upward_velocity_cost: float = 0.0
    jump_height_cost: float = 0.0
    generation: int = 1
    single_support_time: float = 0.0
    foot_lift_count: int = 0
    contact_alternations: int = 0
    traction_time: float = 0.0
    hidden_node_count: int = 0
    # Stats of the previous generation's best genome.
    last_gen_best_distance: float = 0.0
    last_gen_best_velocity: float = 0.0
    last_gen_best_fitness: float = 0.0
    last_gen_step_coverage: float = 0.0

    @property
    def avg_velocity(self) -> float:
        return self.distance / self.survived if self.survived > 0 else 0.0

    @property
    def step_coverage(self) -> float:
        """Share of forward distance explained by effective steps."""
        dist = max(0.0, self.distance)
        if dist <= 0:
            return 0.0
        return min(max(0.0, self.effective_step_length_sum), dist) / dist

    @property
    def slip_per_meter(self) -> float:
        return self.slip_cost / self.distance if self.distance > 0 else self.slip_cost

    @property
    def completed(self) -> bool:
        """True when the episode reached the time limit without falling."""
        return not self.fallen and self.survived >= self.max_survival_time - 0.1

    def to_dict(self) -> Dict:
        data = asdict(self)
        data.update(
            avg_velocity=self.avg_velocity,
            step_coverage=self.step_coverage,
            slip_per_meter=self.slip_per_meter,
        )
        return data


@dataclass(frozen=True)
class FitnessBreakdown:
    distance_reward: float
    distance_milestone_bonus: float
    survival_bonus: float
    completion_bonus: float
    velocity_bonus: float
    velocity_milestone_bonus: float
    step_coverage_bonus: float
    step_bonus: float
    single_support_bonus: float
    falling_penalty: float
    backwards_penalty: float
    slow_movement_penalty: float
    standing_still_penalty: float
    floor: float

    @property
    def raw_total(self) -> float:
        return (
            self.distance_reward
            + self.distance_milestone_bonus
            + self.survival_bonus
            + self.completion_bonus
            + self.velocity_bonus
            + self.velocity_milestone_bonus
            + self.step_coverage_bonus
            + self.step_bonus
            + self.single_support_bonus
            - self.falling_penalty
            - self.backwards_penalty
            - self.slow_movement_penalty
            - self.standing_still_penalty
        )

    @property
    def total(self) -> float:
        return max(self.floor, self.raw_total)


def score_episode(
    record: EpisodeRecord, config: FitnessConfig = DEFAULT_FITNESS
) -> FitnessBreakdown:
    """Score one episode term by term.

    Distance dominates, but only distance covered by real steps counts in
    full: below the step coverage threshold the credited distance is
    capped and halved, so shuffling can never outscore walking.
    """
    raw_dist = record.distance
    dist = max(0.0, raw_dist)
    survival = record.survived
    velocity = record.avg_velocity
    coverage = record.step_coverage
    completed = record.completed
    if record.max_survival_time > 0:
        survival_frac = clamp(survival / record.max_survival_time, 0.0, 1.0)
    else:
        survival_frac = 0.0

    threshold = config.step_coverage_threshold
    gated = coverage >= threshold
    if gated:
        effective_distance = dist
        multiplier = 1.0 + min(
            config.coverage_bonus_cap, (coverage - threshold) * config.coverage_bonus_gain
        )
    else:
        effective_distance = min(dist, config.shuffle_distance_cap) * coverage / threshold
        multiplier = config.shuffle_multiplier

    distance_reward = (
        effective_distance
        * config.points_per_meter
        * multiplier
        * (config.survival_weight_base + (1 - config.survival_weight_base) * survival_frac)
    )

    distance_milestone_bonus = 0.0
    if gated:
        speed_mult = 1.0 + max(0.0, velocity - config.milestone_velocity_floor) * (
            config.milestone_velocity_gain
        )
        distance_milestone_bonus = sum(
            bonus * speed_mult for at, bonus in config.distance_milestones if dist >= at
        )

    velocity_bonus = 0.0
    if velocity > 0:
        gain = config.velocity_bonus_walking if gated else config.velocity_bonus_shuffling
        velocity_bonus = velocity * velocity * gain * survival_frac

    velocity_milestone_bonus = 0.0
    if completed and gated:
        velocity_milestone_bonus = sum(
            bonus for at, bonus in config.velocity_milestones if velocity >= at
        )

    if completed:
        step_coverage_bonus = coverage * dist * config.coverage_distance_bonus_completed
    else:
        step_coverage_bonus = coverage * dist * config.coverage_distance_bonus_fallen

    falling_penalty = 0.0
    if record.fallen:
        falling_penalty = (
            config.fall_base_penalty
            + dist * survival_frac * config.fall_wasted_potential_gain
        )

    slow_movement_penalty = 0.0
    standing_still_penalty = 0.0
    if completed and velocity < config.slow_velocity_target:
        slow_movement_penalty = (config.slow_velocity_target - velocity) * config.slow_movement_gain
    if completed and velocity < config.standing_velocity_target:
        standing_still_penalty = (
            config.standing_velocity_target - velocity
        ) * config.standing_still_gain

    return FitnessBreakdown(
        distance_reward=distance_reward,
        distance_milestone_bonus=distance_milestone_bonus,
        survival_bonus=survival * config.survival_bonus_per_second,
        completion_bonus=config.completion_bonus if completed else 0.0,
        velocity_bonus=velocity_bonus,
        velocity_milestone_bonus=velocity_milestone_bonus,
        step_coverage_bonus=step_coverage_bonus,
        step_bonus=record.effective_step_count * config.effective_step_bonus,
        single_support_bonus=record.single_support_time * config.single_support_bonus_per_second,
        falling_penalty=falling_penalty,
        backwards_penalty=abs(raw_dist) * config.backwards_penalty_per_meter if raw_dist < 0 else 0.0,
        slow_movement_penalty=slow_movement_penalty,
        standing_still_penalty=standing_still_penalty,
        floor=config.min_fitness_base + survival * config.min_fitness_per_second,
    )


def compute_fitness(record: EpisodeRecord, config: FitnessConfig = DEFAULT_FITNESS) -> float:
    return score_episode(record, config).total


@dataclass(frozen=True)
class CurriculumPhase:
    step_phase: float
    intermediate_phase: float
    penalty_phase: float


def curriculum_phase(
    distance: float, step_coverage: float, config: FitnessConfig = DEFAULT_FITNESS
) -> CurriculumPhase:
    """Which shaping stage the previous generation's best genome reached."""
    first_milestone = config.distance_milestones[0][0] if config.distance_milestones else 4.0
    if distance < first_milestone:
        return CurriculumPhase(step_phase=0.0, intermediate_phase=1.0, penalty_phase=0.0)
    penalty = clamp((distance - first_milestone) / 6.0, 0.0, 1.0)
    if step_coverage < config.step_coverage_threshold:
        return CurriculumPhase(step_phase=0.6, intermediate_phase=0.7, penalty_phase=penalty)
    return CurriculumPhase(step_phase=1.0, intermediate_phase=0.4, penalty_phase=penalty)


class GaitTracker:
    """Accumulates gait statistics across the control steps of one episode.

    Call ``update`` once per control step with the commands that were sent
    and the state the simulator returned, then ``finish`` to obtain the
    episode record.
    """

    def __init__(self, initial: BodyState):
        self.start_x = initial.torso_x
        self.base_com_y = initial.com_y
        self.elapsed = 0.0
        self.distance = 0.0
        self.record = EpisodeRecord()

        self._prev_left = initial.left_foot_contact
        self._prev_right = initial.right_foot_contact
        self._left_swing = 0.0
        self._right_swing = 0.0
        self._last_strike_foot: Optional[str] = None
        self._last_strike_time = -1.0
        self._prev_both_down = True
        self._last_single_support: Optional[str] = None
        self._last_step_torso_x = initial.torso_x

    def update(self, state: BodyState, outputs: Sequence[float], dt: float):
        rec = self.record
        self.elapsed += dt

        rec.energy_cost += sum(v * v for v in outputs) * dt
        rec.arm_actuation_cost += (
            sum(outputs[i] * outputs[i] for i in ARM_OUTPUTS if i < len(outputs)) * dt
        )

        up = max(0.0, state.com_vy)
        rec.upward_velocity_cost += up * up * dt
        rec.jump_height_cost += (
            max(0.0, state.com_y - self.base_com_y - JUMP_HEIGHT_MARGIN) * dt
        )
        if not state.left_foot_contact and not state.right_foot_contact:
            rec.air_time += dt

        self._track_gait(state, dt)

        if state.leg_ground:
            rec.leg_ground_time += dt
        rec.torso_tilt_cost += abs(normalize_angle(state.torso_angle)) * dt
        rec.torso_spin_cost += abs(state.torso_angular_velocity) * dt

        edge = 2.0 * JOINT_LIMIT_EDGE  # normalized range is [-1, 1]
        for angle, speed in zip(state.joint_angles, state.joint_speeds):
            rec.joint_speed_cost += abs(speed) * dt
            to_edge = min(angle + 1.0, 1.0 - angle)
            proximity = max(0.0, edge - to_edge) / edge
            rec.joint_limit_cost += proximity * proximity * dt

        self.distance = state.torso_x - self.start_x

    def _track_gait(self, state: BodyState, dt: float):
        rec = self.record
        left = state.left_foot_contact
        right = state.right_foot_contact
        left_swing = self._left_swing
        right_swing = self._right_swing

        if left != right:
            rec.single_support_time += dt

        both_down = left and right
        if self._prev_both_down and not both_down and (left or right):
            rec.foot_lift_count += 1
        self._prev_both_down = both_down

        single = "left" if left and not right else "right" if right and not left else None
        if single and self._last_single_support and single != self._last_single_support:
            rec.contact_alternations += 1
        if single:
            self._last_single_support = single

        # Feet sliding while in contact
        if left:
            rec.slip_cost += abs(state.left_foot_vx) * dt
        if right:
            rec.slip_cost += abs(state.right_foot_vx) * dt
        left_planted = left and abs(state.left_foot_vx) < PLANTED_SPEED
        right_planted = right and abs(state.right_foot_vx) < PLANTED_SPEED
        if left_planted or right_planted:
            rec.traction_time += dt

        if state.com_y - self.base_com_y < CLEARANCE_MAX_COM_RISE and left != right:
            swing_y = state.right_foot_y if left else state.left_foot_y
            rec.swing_clearance_score += (
                max(0.0, min(CLEARANCE_MAX, swing_y) - CLEARANCE_MIN) * dt
            )

        self._try_strike(state, "left", left_swing)
        self._try_strike(state, "right", right_swing)

        self._left_swing = 0.0 if left else left_swing + dt
        self._right_swing = 0.0 if right else right_swing + dt
        self._prev_left = left
        self._prev_right = right

    def _try_strike(self, state: BodyState, foot: str, swing_time: float):
        """Register a heel strike if `foot` just touched down after a real swing."""
        is_left = foot == "left"
        contact = state.left_foot_contact if is_left else state.right_foot_contact
        was_contact = self._prev_left if is_left else self._prev_right
        other_contact = state.right_foot_contact if is_left else state.left_foot_contact
        if not contact or was_contact:
            return
        if swing_time < MIN_SWING_SECONDS:
            return
        now = self.elapsed
        if self._last_strike_time >= 0 and now - self._last_strike_time < MIN_STRIDE_SECONDS:
            return

        strike_x = state.left_foot_x if is_left else state.right_foot_x
        stance_x = state.right_foot_x if is_left else state.left_foot_x
        progress = state.torso_x - self._last_step_torso_x

        # Without a stance foot (flight phase) torso progress stands in for stride
        raw_length = strike_x - stance_x if other_contact else progress
        step_length = clamp(raw_length - STEP_LENGTH_OFFSET, 0.0, MAX_STEP_LENGTH)

        if self._last_strike_foot is None or self._last_strike_foot != foot:
            rec = self.record
            rec.step_count += 1
            rec.step_length_sum += step_length
            if progress >= MIN_STEP_PROGRESS:
                rec.effective_step_count += 1
                rec.effective_step_length_sum += min(step_length, progress)
                self._last_step_torso_x = state.torso_x

        self._last_strike_foot = foot
        self._last_strike_time = now

    def finish(
        self,
        fallen: bool,
        max_survival_time: float,
        generation: int = 1,
        hidden_node_count: int = 0,
        last_gen_best_distance: float = 0.0,
        last_gen_best_velocity: float = 0.0,
        last_gen_best_fitness: float = 0.0,
        last_gen_step_coverage: float = 0.0,
    ) -> EpisodeRecord:
        rec = self.record
        rec.distance = self.distance
        rec.survived = self.elapsed
        rec.max_survival_time = max_survival_time
        rec.fallen = fallen
        rec.generation = generation
        rec.hidden_node_count = hidden_node_count
        rec.last_gen_best_distance = last_gen_best_distance
        rec.last_gen_best_velocity = last_gen_best_velocity
        rec.last_gen_best_fitness = last_gen_best_fitness
        rec.last_gen_step_coverage = last_gen_step_coverage
        return rec
