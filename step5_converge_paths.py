"""Step 5: Assemble the story graph and force every branch back to the ending."""
import logging
from collections import deque
from step1_chunk_text import reconstruct_sentences
from utils.validation import check_graph
from weaver.errors import GraphInvariantError
from weaver.models import (
    ENDING_NODE_ID,
    START_NODE_ID,
    ConvergencePoint,
    Ending,
    GraphEdge,
    GraphNode,
    StoryGraph,
)


logger = logging.getLogger(__name__)

ENDING_SENTENCES = 3


class StoryGraphBuilder:
    """Mutable node arena and edge list, frozen into a StoryGraph when done."""

    def __init__(self):
        self.nodes = {}
        self.edges = []
        self._out_degree = {}

    def add_node(self, node):
        """Add a node once; later additions with the same id are ignored."""
        if node.id not in self.nodes:
            self.nodes[node.id] = node
            return True
        return False

    def add_edge(self, source, target, choice=None, consequence=None):
        if source not in self.nodes:
            raise GraphInvariantError(f"edge from unknown node {source}")
        position = self._out_degree.get(source, 0)
        self._out_degree[source] = position + 1
        edge_id = f"edge_{source}_{position}"
        self.edges.append(GraphEdge(
            id=edge_id,
            source=source,
            target=target,
            choice=choice,
            consequence=consequence,
        ))

    def freeze(self, ending, convergence_points, total_scenes):
        depth = max((n.branch_depth for n in self.nodes.values()), default=0)
        return StoryGraph(
            nodes=tuple(self.nodes.values()),
            edges=tuple(self.edges),
            ending=ending,
            convergence_points=tuple(convergence_points),
            total_scenes=total_scenes,
            max_branch_depth=depth,
        )


class PathConvergenceEngine:
    """Build a bounded branching graph whose every path ends at the original ending."""

    def __init__(self, config):
        self.config = config
        self.max_branch_depth = config['path_convergence']['max_branch_depth']
        self.convergence_buffer = config['path_convergence']['convergence_buffer']
        self.max_choices = config['choice_synthesis']['max_choices_per_point']

    @staticmethod
    def interval(total_scenes):
        return max(3, total_scenes // 5)

    def should_converge(self, index, total_scenes):
        if index >= total_scenes - self.convergence_buffer:
            return True
        return index % self.interval(total_scenes) == 0

    def convergence_points(self, total_scenes, chunks):
        """Chapter boundaries, periodic points and a pre-ending point, sorted and deduplicated."""
        points = [
            ConvergencePoint(
                id=f"convergence_chapter_{chunk.index}",
                after_scene_index=chunk.index,
                type="chapter_boundary",
                reason="Natural chapter boundary",
            )
            for chunk in chunks
            if chunk.is_chapter_start or chunk.is_chapter_end
        ]

        interval = self.interval(total_scenes)
        for i in range(interval, total_scenes, interval):
            points.append(ConvergencePoint(
                id=f"convergence_periodic_{i}",
                after_scene_index=i,
                type="periodic",
                reason="Periodic convergence to maintain story coherence",
            ))

        if total_scenes > 3:
            points.append(ConvergencePoint(
                id="convergence_pre_ending",
                after_scene_index=total_scenes - 3,
                type="pre_ending",
                reason="Convergence before story ending",
            ))

        seen = set()
        unique = []
        for point in sorted(points, key=lambda p: p.after_scene_index):
            if point.after_scene_index not in seen:
                seen.add(point.after_scene_index)
                unique.append(point)
        return unique

    def extract_ending(self, chunks, whole_text=False):
        if whole_text:
            content = " ".join(reconstruct_sentences(chunks))
            if content:
                return Ending(content=content, is_original=True, chunk_id=None)
            return Ending(content="The End", is_original=False)

        sentences = chunks[-1].sentences if chunks else ()
        if not sentences:
            return Ending(content="The End", is_original=False)
        return Ending(
            content=" ".join(sentences[-ENDING_SENTENCES:]),
            is_original=True,
            chunk_id=chunks[-1].id,
        )

    def converge(self, scenes, choices, consequences, chunks):
        """
        Build the story graph.

        Args:
            scenes: Scenes in story order
            choices: Choices for all scenes
            consequences: Dict of choice id -> Consequence
            chunks: Chunks the scenes were built from

        Returns:
            StoryGraph
        """
        total = len(scenes)
        overlay = self.convergence_points(total, chunks)
        overlay_indices = {p.after_scene_index for p in overlay}
        ending = self.extract_ending(chunks, whole_text=total == 0)

        builder = StoryGraphBuilder()
        builder.add_node(GraphNode(id=START_NODE_ID, kind="start", title="Start", description=""))
        builder.add_node(GraphNode(
            id=ENDING_NODE_ID, kind="ending", title="The End", description=ending.content,
        ))

        if total == 0:
            builder.add_edge(START_NODE_ID, ENDING_NODE_ID)
        else:
            self._build_paths(builder, scenes, choices, consequences, overlay_indices)

        graph = builder.freeze(ending, overlay, total)
        self.verify(graph)

        logger.info(f"Path convergence completed: {len(graph.nodes)} nodes, "
                    f"{len(graph.edges)} edges, {len(overlay)} convergence points, "
                    f"max branch depth {graph.max_branch_depth}")
        return graph

    def _scene_node(self, scene, overlay_indices, lane=None, depth=0, modifier=None):
        if lane is None:
            return GraphNode(
                id=scene.id,
                kind="scene",
                title=scene.title,
                description=scene.summary_text,
                scene_index=scene.index,
                scene_id=scene.id,
                is_convergence_point=scene.index in overlay_indices,
            )
        return GraphNode(
            id=f"{scene.id}_branch_{lane}",
            kind="branch",
            title=scene.title,
            description=scene.summary_text,
            scene_index=scene.index,
            scene_id=scene.id,
            branch=lane,
            branch_depth=depth,
            modifier=modifier,
            is_convergence_point=scene.index in overlay_indices,
        )

    def _build_paths(self, builder, scenes, choices, consequences, overlay_indices):
        total = len(scenes)
        choices_by_scene = {}
        for choice in choices:
            choices_by_scene.setdefault(choice.scene_id, []).append(choice)

        first = self._scene_node(scenes[0], overlay_indices)
        builder.add_node(first)
        builder.add_edge(START_NODE_ID, first.id)

        queue = deque([first])
        while queue:
            node = queue.popleft()
            j = node.scene_index
            convergent = self.should_converge(j, total)
            scene_choices = choices_by_scene.get(scenes[j].id, [])
            if not scene_choices:
                raise GraphInvariantError(f"scene {scenes[j].id} has no choices")

            for k, choice in enumerate(scene_choices):
                consequence = consequences.get(choice.id)

                if j == total - 1:
                    target = None
                elif node.kind == "scene" and not convergent:
                    target = self._scene_node(
                        scenes[j + 1], overlay_indices, lane=k, depth=1,
                        modifier=consequence.next_scene_modifier if consequence else None,
                    )
                elif node.kind == "branch" and not convergent and node.branch_depth < self.max_branch_depth:
                    target = self._scene_node(
                        scenes[j + 1], overlay_indices, lane=node.branch,
                        depth=node.branch_depth + 1, modifier=node.modifier,
                    )
                else:
                    target = self._scene_node(scenes[j + 1], overlay_indices)

                if target is None:
                    builder.add_edge(node.id, ENDING_NODE_ID, choice, consequence)
                    continue
                if builder.add_node(target):
                    queue.append(target)
                builder.add_edge(node.id, target.id, choice, consequence)

    def verify(self, graph):
        """Raise GraphInvariantError when the graph breaks a structural invariant."""
        errors = check_graph(graph, self.max_choices)
        if errors:
            raise GraphInvariantError("; ".join(errors))

        bound = graph.total_scenes + self.max_branch_depth + 1
        longest = graph.longest_path_length()
        if longest > bound:
            raise GraphInvariantError(f"longest path {longest} exceeds bound {bound}")


def run_step5(config, scenes, choices, consequences, chunks):
    """Run step 5: path convergence."""
    return PathConvergenceEngine(config).converge(scenes, choices, consequences, chunks)
