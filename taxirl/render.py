"""
Rendering

Text and matplotlib views of worlds, states and replayed trajectories.

Text maps reuse the world's box-drawing lines with the cells rewritten:

    t   taxi (empty)
    T   taxi carrying the passenger
    p   waiting passenger
    d   destination
    .   any other cell (named locations included)
"""

from __future__ import annotations

from typing import List, Optional, Tuple, TYPE_CHECKING

from taxirl.state import Action, State

if TYPE_CHECKING:
    from taxirl.runner import Attempt
    from taxirl.world import World


def display_state(world: "World", state: State) -> List[str]:
    """
    Render a state as map lines.

    Args:
        world: The world.
        state: State to show.

    Returns:
        The map lines with taxi, passenger and destination marked.

    Example:
        >>> print("\\n".join(display_state(world, state)))
    """
    lines = [list(line) for line in world.display_strings()]

    def put(position, char: str) -> None:
        lines[2 * position[1] + 1][2 * position[0] + 1] = char

    for position in world.locations.values():
        put(position, ".")
    put(world.locations[state.destination], "d")
    if not state.in_taxi:
        put(world.locations[state.passenger], "p")
    put(state.taxi, "T" if state.in_taxi else "t")

    return ["".join(line) for line in lines]


def format_attempt(world: "World", attempt: "Attempt", show_maps: bool = True) -> str:
    """
    Format a replayed trajectory step by step.

    Args:
        world: The world.
        attempt: Rollout from taxirl.runner.attempt or replay.
        show_maps: Include the text map of every visited state.

    Returns:
        Multi-line text ending with the outcome.
    """
    out: List[str] = [f"Start: {attempt.start}"]
    for i, step in enumerate(attempt.steps):
        if show_maps:
            out.extend(display_state(world, step.state))
        out.append(f"{i + 1:4d}. {step.action!s} -> {step.reward:+g}")

    final_state = attempt.final_state if attempt.final_state is not None else attempt.start
    if show_maps:
        out.extend(display_state(world, final_state))

    if attempt.success:
        out.append(f"Delivered in {len(attempt.steps)} steps, reward {attempt.total_reward:g}")
    else:
        out.append(
            f"Not delivered after {len(attempt.steps)} steps "
            f"(budget {attempt.max_steps}), reward {attempt.total_reward:g}"
        )
    return "\n".join(out)


def visualize_world(
    world: "World",
    state: Optional[State] = None,
    ax=None,
    title: Optional[str] = None,
    figsize: Tuple[float, float] = (6, 6),
):
    """
    Draw the world with matplotlib.

    Walls are thick black lines, named locations are labelled in their
    cells. When a state is given the passenger (orange), destination (green)
    and taxi (yellow, red edge when carrying) are marked.

    Args:
        world: The world.
        state: Optional state to mark.
        ax: Matplotlib axes to plot on. If None, creates new figure.
        title: Title for the plot.
        figsize: Figure size if creating new figure.

    Returns:
        Matplotlib axes object.

    Example:
        >>> import matplotlib.pyplot as plt
        >>> ax = visualize_world(world, state, title="Taxi")
        >>> plt.show()
    """
    import matplotlib.pyplot as plt
    import matplotlib.patches as mpatches

    if ax is None:
        fig, ax = plt.subplots(figsize=figsize)

    for x in range(world.width + 1):
        ax.axvline(x - 0.5, color="lightgray", linewidth=0.5)
    for y in range(world.height + 1):
        ax.axhline(y - 0.5, color="lightgray", linewidth=0.5)

    # Each wall is drawn from the cell west / north of it
    for y in range(world.height):
        for x in range(world.width):
            if world.walls[y, x, Action.EAST]:
                ax.plot([x + 0.5, x + 0.5], [y - 0.5, y + 0.5], color="black", linewidth=3)
            if world.walls[y, x, Action.SOUTH]:
                ax.plot([x - 0.5, x + 0.5], [y + 0.5, y + 0.5], color="black", linewidth=3)
            if x == 0:
                ax.plot([-0.5, -0.5], [y - 0.5, y + 0.5], color="black", linewidth=3)
            if y == 0:
                ax.plot([x - 0.5, x + 0.5], [-0.5, -0.5], color="black", linewidth=3)

    for loc, (x, y) in world.locations.items():
        ax.text(x - 0.35, y - 0.3, loc, ha="left", va="top", fontsize=12, fontweight="bold")

    if state is not None:
        dx, dy = world.locations[state.destination]
        ax.add_patch(mpatches.Rectangle((dx - 0.45, dy - 0.45), 0.9, 0.9, color="limegreen", alpha=0.3))
        if not state.in_taxi:
            px, py = world.locations[state.passenger]
            ax.plot(px, py, "o", color="orange", markersize=14)
        tx, ty = state.taxi
        ax.plot(
            tx,
            ty,
            "s",
            color="gold",
            markersize=18,
            markeredgecolor="red" if state.in_taxi else "black",
            markeredgewidth=2,
        )

    ax.set_xlim(-0.6, world.width - 0.4)
    ax.set_ylim(world.height - 0.4, -0.6)
    ax.set_aspect("equal")
    ax.set_xticks(range(world.width))
    ax.set_yticks(range(world.height))

    if title:
        ax.set_title(title)

    return ax


def visualize_trajectory(
    world: "World",
    attempt: "Attempt",
    max_steps: int = 200,
    figsize: Tuple[float, float] = (8, 6),
):
    """
    Visualize a replayed trajectory on the world.

    Shows the world at the start state with arrows along the taxi's path.

    Args:
        world: The world.
        attempt: Rollout to draw.
        max_steps: Maximum number of steps to draw.
        figsize: Figure size.

    Returns:
        Matplotlib axes object.
    """
    import matplotlib.pyplot as plt

    fig, ax = plt.subplots(figsize=figsize)
    visualize_world(world, attempt.start, ax=ax)

    states = attempt.states()
    n_steps = min(len(states) - 1, max_steps)

    for t in range(n_steps):
        x1, y1 = states[t].taxi
        x2, y2 = states[t + 1].taxi
        if (x1, y1) == (x2, y2):
            continue

        # Small offset to see overlapping arrows
        offset = 0.1 * (t / max(n_steps, 1))
        ax.annotate(
            "",
            xy=(x2 + offset, y2 + offset),
            xytext=(x1 + offset, y1 + offset),
            arrowprops=dict(arrowstyle="->", color="red" if states[t].in_taxi else "blue", alpha=0.6, lw=1.5),
        )

    outcome = "delivered" if attempt.success else "not delivered"
    ax.set_title(f"Trajectory ({n_steps} steps, {outcome})")

    return ax
