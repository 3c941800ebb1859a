"""
Controller I/O contract for the biped and the motion simulator interface.
"""

import math
from dataclasses import dataclass
from typing import TYPE_CHECKING, List, Protocol, Sequence, Tuple

import numpy as np

if TYPE_CHECKING:
    from .network import Network

JOINT_ORDER: Tuple[str, ...] = (
    "neck",
    "shoulderL",
    "elbowL",
    "shoulderR",
    "elbowR",
    "hipL",
    "kneeL",
    "ankleL",
    "hipR",
    "kneeR",
    "ankleR",
)
ARM_JOINTS: Tuple[str, ...] = ("neck", "shoulderL", "elbowL", "shoulderR", "elbowR")

# Per joint (angle, speed), torso tilt and spin, two foot contacts,
# COM height/vx/vy, phase sin/cos.
EXTRA_INPUTS = 9
INPUT_COUNT = len(JOINT_ORDER) * 2 + EXTRA_INPUTS
OUTPUT_COUNT = len(JOINT_ORDER)

GAIT_PERIOD_SECONDS = 1.2
FALL_HEIGHT = 0.4


@dataclass(frozen=True)
class ControllerLayout:
    """Designated input/output positions used by seeding and mirroring.

    Input positions may be negative (counted from the end, like list
    indices). Positions outside a genome's actual counts are ignored.
    """

    sin_phase_input: int = -2
    cos_phase_input: int = -1
    torso_angle_input: int = len(JOINT_ORDER) * 2
    leg_outputs: Tuple[int, ...] = (5, 6, 7, 8, 9, 10)
    knee_outputs: Tuple[int, ...] = (6, 9)
    hip_outputs: Tuple[int, ...] = (5, 8)
    # (left, right) output positions for hip, knee, ankle.
    mirror_pairs: Tuple[Tuple[int, int], ...] = ((5, 8), (6, 9), (7, 10))
    arm_outputs: Tuple[int, ...] = (0, 1, 2, 3, 4)


BIPED_LAYOUT = ControllerLayout()


def resolve(ids: Sequence[int], position: int):
    """Node id at a layout position, or None when it does not exist."""
    if -len(ids) <= position < len(ids):
        return ids[position]
    return None


def clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def normalize_angle(angle: float) -> float:
    while angle > math.pi:
        angle -= 2 * math.pi
    while angle < -math.pi:
        angle += 2 * math.pi
    return angle


@dataclass
class BodyState:
    """One snapshot of the creature as reported by the motion simulator.

    Joint angles are normalized by the simulator to [-1, 1] around each
    joint's neutral pose; joint speeds are raw rad/s.
    """

    joint_angles: Sequence[float]
    joint_speeds: Sequence[float]
    torso_angle: float = 0.0
    torso_angular_velocity: float = 0.0
    torso_x: float = 0.0
    torso_y: float = 1.0
    head_y: float = 1.5
    com_x: float = 0.0
    com_y: float = 1.0
    com_vx: float = 0.0
    com_vy: float = 0.0
    left_foot_contact: bool = True
    right_foot_contact: bool = True
    left_foot_x: float = 0.0
    left_foot_y: float = 0.0
    right_foot_x: float = 0.0
    right_foot_y: float = 0.0
    left_foot_vx: float = 0.0
    right_foot_vx: float = 0.0
    head_ground: bool = False
    torso_ground: bool = False
    arm_ground: bool = False
    leg_ground: bool = False

    @property
    def fallen(self) -> bool:
        if self.head_ground or self.torso_ground or self.arm_ground:
            return True
        return self.head_y < FALL_HEIGHT or self.torso_y < FALL_HEIGHT


class MotionSimulator(Protocol):
    """Physics collaborator: a pure step function over body state."""

    def reset(self) -> BodyState:
        ...

    def step(self, commands: Sequence[float], dt_seconds: float) -> BodyState:
        ...


def encode_inputs(state: BodyState, t_seconds: float, start_com_y: float) -> List[float]:
    """Build the controller input vector for one control step."""
    inputs = []
    for angle, speed in zip(state.joint_angles, state.joint_speeds):
        inputs.append(clamp(angle, -1.0, 1.0))
        inputs.append(clamp(speed / 10.0, -1.0, 1.0))

    inputs.append(clamp(normalize_angle(state.torso_angle) / (math.pi / 2), -1.0, 1.0))
    inputs.append(clamp(state.torso_angular_velocity / 8.0, -1.0, 1.0))

    inputs.append(1.0 if state.left_foot_contact else 0.0)
    inputs.append(1.0 if state.right_foot_contact else 0.0)

    inputs.append(clamp((state.com_y - start_com_y) / 0.6, -1.0, 1.0))
    inputs.append(clamp(state.com_vx / 3.0, -1.0, 1.0))
    inputs.append(clamp(state.com_vy / 3.0, -1.0, 1.0))

    phase = t_seconds * 2 * math.pi / GAIT_PERIOD_SECONDS
    inputs.append(math.sin(phase))
    inputs.append(math.cos(phase))
    return inputs


def phase_sweep(input_count: int, layout: ControllerLayout = BIPED_LAYOUT, samples: int = 24) -> np.ndarray:
    """Inputs for one gait cycle with every signal at rest except the phase pair."""
    batch = np.zeros((samples, input_count), dtype=np.float32)
    phases = np.linspace(0.0, 2 * np.pi, samples, endpoint=False)
    positions = list(range(input_count))
    sin_pos = resolve(positions, layout.sin_phase_input)
    cos_pos = resolve(positions, layout.cos_phase_input)
    if sin_pos is not None:
        batch[:, sin_pos] = np.sin(phases)
    if cos_pos is not None:
        batch[:, cos_pos] = np.cos(phases)
    return batch


def gait_symmetry(
    network: "Network", layout: ControllerLayout = BIPED_LAYOUT, samples: int = 24
) -> float:
    """Mean anti-correlation of mirrored leg outputs over one phase cycle.

    1.0 means left and right legs move in perfect antiphase, -1.0 means
    they move in lockstep, 0.0 means no measurable relationship.
    """
    outputs = np.asarray(
        network.activate_batch(phase_sweep(network.input_count, layout, samples))
    )
    scores = []
    for left, right in layout.mirror_pairs:
        if left >= outputs.shape[1] or right >= outputs.shape[1]:
            continue
        l, r = outputs[:, left], outputs[:, right]
        if l.std() < 1e-6 or r.std() < 1e-6:
            continue
        scores.append(-float(np.corrcoef(l, r)[0, 1]))
    return float(np.mean(scores)) if scores else 0.0
