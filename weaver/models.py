"""Data models shared by the story weaving steps."""
from collections import deque
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


CONFIDENCE_RANK = {"none": 0, "low": 1, "medium": 2, "high": 3}

START_NODE_ID = "scene_start"
ENDING_NODE_ID = "scene_ending"


class EmotionalTone(str, Enum):
    UPLIFTING = "uplifting"
    UNCERTAIN = "uncertain"
    BALANCED = "balanced"
    HOPEFUL = "hopeful"
    EXCITING = "exciting"
    TENSE = "tense"
    CURIOUS = "curious"
    RELIEVED = "relieved"
    DETERMINED = "determined"
    WARM = "warm"
    CAUTIOUS = "cautious"
    WARY = "wary"
    OPEN = "open"
    SECRETIVE = "secretive"
    NEUTRAL = "neutral"


@dataclass(frozen=True)
class Chunk:
    """Sentence-aligned slice of one section of the normalized text."""

    id: str
    index: int
    section_index: int
    section_title: str
    content: str
    start_offset: int
    end_offset: int
    word_count: int
    sentences: Tuple[str, ...] = ()
    is_chapter_start: bool = False
    is_chapter_end: bool = False
    has_dialogue: bool = False
    overlap_sentences: int = 0
    paragraph_count: int = 0

    @property
    def new_sentences(self) -> Tuple[str, ...]:
        """Sentences not repeated from the previous chunk."""
        return self.sentences[self.overlap_sentences:]


@dataclass(frozen=True)
class DecisionPoint:
    """Sentence location where the reader is offered a choice."""

    id: str
    chunk_id: str
    chunk_index: int
    sentence_index: int
    sentence: str
    category: str
    category_weight: float
    confidence: str
    matched_pattern: str
    position: float
    section_title: str = ""
    is_chapter_boundary: bool = False

    @property
    def score(self) -> float:
        return CONFIDENCE_RANK.get(self.confidence, 0) * self.category_weight


@dataclass(frozen=True)
class Scene:
    id: str
    decision_point_id: str
    chunk_id: str
    index: int
    title: str
    summary_text: str
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Choice:
    id: str
    scene_id: str
    text: str
    type: str
    weight: float = 1.0
    category: str = ""


@dataclass(frozen=True)
class SceneModifier:
    """Soft multipliers used to color the next scene.

    Floats only: a modifier can shade tone and pacing but has nowhere to put a
    scene id, so it cannot change which scene comes next.
    """

    mood: float = 1.0
    pace: float = 1.0
    trust: float = 1.0
    awareness: float = 1.0

    def to_dict(self) -> Dict[str, float]:
        return asdict(self)


@dataclass(frozen=True)
class Consequence:
    id: str
    choice_id: str
    text: str
    consequence_type: str
    emotional_tone: EmotionalTone
    next_scene_modifier: SceneModifier = field(default_factory=SceneModifier)
    duration: str = "temporary"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "choiceId": self.choice_id,
            "text": self.text,
            "type": self.consequence_type,
            "emotionalTone": self.emotional_tone.value,
            "nextSceneModifier": self.next_scene_modifier.to_dict(),
            "duration": self.duration,
        }


@dataclass(frozen=True)
class ConvergencePoint:
    id: str
    after_scene_index: int
    type: str
    reason: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "afterSceneIndex": self.after_scene_index,
            "type": self.type,
            "reason": self.reason,
        }


@dataclass(frozen=True)
class Ending:
    content: str
    is_original: bool = True
    chunk_id: Optional[str] = None


@dataclass(frozen=True)
class GraphNode:
    """Node of the story graph: a sentinel, a scene, or a branch variant of one."""

    id: str
    kind: str  # start|scene|branch|ending
    title: str
    description: str
    scene_index: Optional[int] = None
    scene_id: Optional[str] = None
    branch: Optional[int] = None
    branch_depth: int = 0
    modifier: Optional[SceneModifier] = None
    is_convergence_point: bool = False


@dataclass(frozen=True)
class GraphEdge:
    id: str
    source: str
    target: str
    choice: Optional[Choice] = None
    consequence: Optional[Consequence] = None


@dataclass(frozen=True)
class StoryGraph:
    """Frozen, navigable story structure produced by path convergence."""

    nodes: Tuple[GraphNode, ...]
    edges: Tuple[GraphEdge, ...]
    ending: Ending
    convergence_points: Tuple[ConvergencePoint, ...] = ()
    total_scenes: int = 0
    max_branch_depth: int = 0
    start_id: str = START_NODE_ID
    ending_id: str = ENDING_NODE_ID

    def node(self, node_id: str) -> GraphNode:
        for node in self.nodes:
            if node.id == node_id:
                return node
        raise KeyError(f"node not found: {node_id}")

    def outgoing(self, node_id: str) -> List[GraphEdge]:
        return [edge for edge in self.edges if edge.source == node_id]

    def successors(self) -> Dict[str, List[str]]:
        adjacency: Dict[str, List[str]] = {node.id: [] for node in self.nodes}
        for edge in self.edges:
            adjacency[edge.source].append(edge.target)
        return adjacency

    def reachable_from(self, node_id: str) -> List[str]:
        """Breadth-first list of node ids reachable from node_id (inclusive)."""
        return _breadth_first(self.successors(), node_id)

    def reaching(self, node_id: str) -> List[str]:
        """Node ids with a path to node_id (inclusive), by reverse breadth-first search."""
        predecessors: Dict[str, List[str]] = {node.id: [] for node in self.nodes}
        for edge in self.edges:
            predecessors.setdefault(edge.target, []).append(edge.source)
        return _breadth_first(predecessors, node_id)

    def longest_path_length(self) -> int:
        """Number of edges on the longest path from START.

        Raises:
            ValueError: if the graph has a cycle
        """
        adjacency = self.successors()
        indegree = {node_id: 0 for node_id in adjacency}
        for targets in adjacency.values():
            for target in targets:
                indegree[target] += 1

        order = []
        queue = deque(node_id for node_id, count in indegree.items() if count == 0)
        while queue:
            node_id = queue.popleft()
            order.append(node_id)
            for target in adjacency[node_id]:
                indegree[target] -= 1
                if indegree[target] == 0:
                    queue.append(target)
        if len(order) < len(adjacency):
            raise ValueError("story graph has a cycle")

        depth: Dict[str, int] = {}
        for node_id in reversed(order):
            targets = adjacency[node_id]
            depth[node_id] = 1 + max(depth[t] for t in targets) if targets else 0
        return depth[self.start_id]

    @property
    def total_choices(self) -> int:
        return sum(1 for edge in self.edges if edge.choice is not None)

    def to_story_dict(self) -> Dict[str, Any]:
        """Render the serializable story structure consumed by readers."""
        scenes: Dict[str, Any] = {}
        for node in self.nodes:
            entry: Dict[str, Any] = {
                "title": node.title,
                "description": node.description,
                "choices": [],
                "isEnding": node.id == self.ending_id,
            }
            if node.kind in ("scene", "branch"):
                entry["sceneIndex"] = node.scene_index
                entry["isConvergencePoint"] = node.is_convergence_point
            if node.kind == "branch":
                entry["branch"] = node.branch
                entry["branchDepth"] = node.branch_depth
            if node.modifier is not None:
                entry["modifier"] = node.modifier.to_dict()
            scenes[node.id] = entry

        for edge in self.edges:
            choice_entry: Dict[str, Any] = {
                "text": edge.choice.text if edge.choice else "Begin the story",
                "nextScene": edge.target,
            }
            if edge.choice is not None:
                choice_entry["type"] = edge.choice.type
            if edge.consequence is not None:
                choice_entry["consequence"] = edge.consequence.to_dict()
            scenes[edge.source]["choices"].append(choice_entry)

        return {
            "startScene": self.start_id,
            "scenes": scenes,
            "ending": {
                "content": self.ending.content,
                "isOriginal": self.ending.is_original,
                "chunkId": self.ending.chunk_id,
            },
            "convergenceMap": {
                str(point.after_scene_index): point.to_dict()
                for point in self.convergence_points
            },
            "metadata": {
                "totalScenes": self.total_scenes,
                "totalChoices": self.total_choices,
                "convergencePoints": len(self.convergence_points),
                "maxBranchDepth": self.max_branch_depth,
            },
        }


def _breadth_first(adjacency: Dict[str, List[str]], root: str) -> List[str]:
    seen = {root}
    order = [root]
    queue = deque([root])
    while queue:
        current = queue.popleft()
        for target in adjacency.get(current, []):
            if target not in seen:
                seen.add(target)
                order.append(target)
                queue.append(target)
    return order
