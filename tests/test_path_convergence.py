"""Tests for story graph assembly and path convergence (step 5)."""
import unittest

import step4_map_consequences as step4
import step5_converge_paths as step5
from tests.fixtures import filler, make_config
from utils.validation import check_graph
from weaver.errors import GraphInvariantError
from weaver.models import (
    ENDING_NODE_ID,
    START_NODE_ID,
    Choice,
    Chunk,
    Ending,
    GraphEdge,
    GraphNode,
    Scene,
    StoryGraph,
)


def _chunks(count=4, chapter_starts=()):
    chunks = []
    for i in range(count):
        sentences = tuple(filler(6, offset=i))
        content = " ".join(sentences)
        chunks.append(Chunk(
            id=f"chunk_{i}", index=i, section_index=0, section_title="Beginning",
            content=content, start_offset=0, end_offset=len(content),
            word_count=len(content.split()), sentences=sentences,
            is_chapter_start=i in chapter_starts,
        ))
    return chunks


def _story(total, choices_per_scene=2):
    scenes = []
    choices = []
    types = ["moral_high", "moral_low", "moral_compromise", "moral_emotional"]
    for i in range(total):
        scene_id = f"scene_{i}"
        scenes.append(Scene(
            id=scene_id, decision_point_id=f"dp_{i}", chunk_id="chunk_0", index=i,
            title=f"Beginning: Scene {i + 1}", summary_text=f"Summary {i}.",
        ))
        for k in range(choices_per_scene):
            choices.append(Choice(
                id=f"choice_{scene_id}_{k}", scene_id=scene_id,
                text=f"Option {k}", type=types[k],
            ))
    return scenes, choices


class PathConvergenceTests(unittest.TestCase):
    def setUp(self):
        self.config = make_config()
        self.engine = step5.PathConvergenceEngine(self.config)

    def _graph(self, total, choices_per_scene=2, config=None):
        config = config or self.config
        scenes, choices = _story(total, choices_per_scene)
        consequences = step4.run_step4(config, choices)
        return step5.run_step5(config, scenes, choices, consequences, _chunks())

    def test_should_converge(self):
        # 10 scenes: interval 3, buffer 2
        flags = [self.engine.should_converge(i, 10) for i in range(10)]
        self.assertEqual(flags, [True, False, False, True, False, False, True, False, True, True])

    def test_every_node_reaches_the_ending(self):
        graph = self._graph(10)
        for node in graph.nodes:
            self.assertIn(ENDING_NODE_ID, graph.reachable_from(node.id))
        self.assertEqual(set(graph.reachable_from(START_NODE_ID)), {n.id for n in graph.nodes})

    def test_path_length_and_out_degree_are_bounded(self):
        for max_choices in (2, 3, 4):
            config = make_config(choice_synthesis={'max_choices_per_point': max_choices})
            graph = self._graph(10, choices_per_scene=max_choices, config=config)

            self.assertEqual(graph.longest_path_length(), 11)
            self.assertEqual(check_graph(graph, max_choices), [])
            for node_id, targets in graph.successors().items():
                if node_id != START_NODE_ID:
                    self.assertLessEqual(len(targets), max_choices)

    def test_long_story_verifies_without_deep_recursion(self):
        graph = self._graph(1200)

        self.assertEqual(graph.longest_path_length(), 1201)
        self.assertEqual(check_graph(graph, 2), [])
        self.assertEqual(len(graph.reaching(ENDING_NODE_ID)), len(graph.nodes))

    def test_branch_depth_is_bounded(self):
        config = make_config(path_convergence={'max_branch_depth': 1, 'convergence_buffer': 0})
        graph = self._graph(20, config=config)
        self.assertEqual(graph.max_branch_depth, 1)
        for node in graph.nodes:
            self.assertLessEqual(node.branch_depth, 1)

    def test_branches_carry_their_opening_modifier(self):
        graph = self._graph(10)
        node_ids = {n.id for n in graph.nodes}

        # scene_0 converges, scene_1 opens one lane per choice
        self.assertNotIn("scene_1_branch_0", node_ids)
        lane = graph.node("scene_2_branch_0")
        self.assertEqual(lane.kind, "branch")
        self.assertEqual(lane.branch_depth, 1)
        self.assertEqual(lane.modifier.mood, 1.2)
        self.assertEqual(graph.node("scene_3_branch_0").branch_depth, 2)
        self.assertEqual(graph.node("scene_3_branch_0").modifier, lane.modifier)
        self.assertEqual(graph.node("scene_2_branch_1").modifier.mood, 0.8)

        # scene_3 converges so both lanes return to the canonical scene_4
        targets = {e.target for e in graph.outgoing("scene_3_branch_0")}
        self.assertEqual(targets, {"scene_4"})

    def test_zero_scenes_connect_start_to_ending(self):
        chunks = _chunks(2)
        graph = self.engine.converge([], [], {}, chunks)

        self.assertEqual([(e.source, e.target) for e in graph.edges], [(START_NODE_ID, ENDING_NODE_ID)])
        expected = " ".join(list(chunks[0].sentences) + list(chunks[1].sentences))
        self.assertEqual(graph.ending.content, expected)
        self.assertTrue(graph.ending.is_original)

    def test_ending_is_last_sentences_of_final_chunk(self):
        chunks = _chunks(3)
        ending = self.engine.extract_ending(chunks)
        self.assertEqual(ending.content, " ".join(chunks[-1].sentences[-3:]))
        self.assertEqual(ending.chunk_id, "chunk_2")

    def test_ending_without_sentences_is_placeholder(self):
        ending = self.engine.extract_ending([])
        self.assertEqual(ending, Ending(content="The End", is_original=False))

    def test_convergence_overlay_is_sorted_and_unique(self):
        points = self.engine.convergence_points(10, _chunks(4, chapter_starts=(0, 3)))
        self.assertEqual([p.after_scene_index for p in points], [0, 3, 6, 7, 9])
        self.assertEqual(points[1].type, "chapter_boundary")
        self.assertEqual(points[3].type, "pre_ending")

    def test_small_story_has_no_pre_ending_point(self):
        points = self.engine.convergence_points(3, [])
        self.assertEqual(points, [])

    def test_scene_without_choices_is_rejected(self):
        scenes, choices = _story(3)
        choices = [c for c in choices if c.scene_id != "scene_1"]
        with self.assertRaises(GraphInvariantError):
            self.engine.converge(scenes, choices, {}, _chunks())

    def test_story_dict_structure(self):
        graph = self._graph(5)
        story = graph.to_story_dict()

        self.assertEqual(story["startScene"], START_NODE_ID)
        self.assertTrue(story["scenes"][ENDING_NODE_ID]["isEnding"])
        self.assertEqual(story["scenes"][ENDING_NODE_ID]["choices"], [])
        start_choices = story["scenes"][START_NODE_ID]["choices"]
        self.assertEqual(start_choices, [{"text": "Begin the story", "nextScene": "scene_0"}])

        first = story["scenes"]["scene_0"]["choices"][0]
        self.assertEqual(first["type"], "moral_high")
        self.assertEqual(first["consequence"]["emotionalTone"], "uplifting")
        self.assertEqual(story["metadata"]["totalScenes"], 5)
        self.assertEqual(story["metadata"]["totalChoices"], len(graph.edges) - 1)


class CheckGraphTests(unittest.TestCase):
    def _node(self, node_id, kind="scene"):
        return GraphNode(id=node_id, kind=kind, title=node_id, description="")

    def test_cycle_and_dead_end_are_reported(self):
        nodes = (
            self._node(START_NODE_ID, "start"),
            self._node("a"),
            self._node("b"),
            self._node("c"),
            self._node(ENDING_NODE_ID, "ending"),
        )
        edges = (
            GraphEdge(id="e0", source=START_NODE_ID, target="a"),
            GraphEdge(id="e1", source="a", target="b"),
            GraphEdge(id="e2", source="b", target="a"),
            GraphEdge(id="e3", source="a", target="c"),
        )
        graph = StoryGraph(nodes=nodes, edges=edges, ending=Ending(content="x"))

        errors = check_graph(graph, 2)
        self.assertTrue(any("dead end" in e for e in errors))
        self.assertTrue(any("cycle" in e.lower() for e in errors))

    def test_unknown_target_is_reported(self):
        nodes = (self._node(START_NODE_ID, "start"), self._node(ENDING_NODE_ID, "ending"))
        edges = (GraphEdge(id="e0", source=START_NODE_ID, target="nowhere"),)
        graph = StoryGraph(nodes=nodes, edges=edges, ending=Ending(content="x"))
        self.assertEqual(check_graph(graph, 2), ["Edge e0 targets unknown node nowhere"])

    def test_reaching_follows_edges_backwards(self):
        nodes = (
            self._node(START_NODE_ID, "start"),
            self._node("a"),
            self._node("b"),
            self._node(ENDING_NODE_ID, "ending"),
        )
        edges = (
            GraphEdge(id="e0", source=START_NODE_ID, target="a"),
            GraphEdge(id="e1", source=START_NODE_ID, target="b"),
            GraphEdge(id="e2", source="a", target=ENDING_NODE_ID),
        )
        graph = StoryGraph(nodes=nodes, edges=edges, ending=Ending(content="x"))

        self.assertEqual(set(graph.reaching(ENDING_NODE_ID)), {START_NODE_ID, "a", ENDING_NODE_ID})
        self.assertEqual(check_graph(graph, 2), ["Node b is a dead end",
                                                 "Node b cannot reach the ending"])

    def test_longest_path_rejects_a_cycle(self):
        nodes = (self._node(START_NODE_ID, "start"), self._node("a"), self._node("b"))
        edges = (
            GraphEdge(id="e0", source=START_NODE_ID, target="a"),
            GraphEdge(id="e1", source="a", target="b"),
            GraphEdge(id="e2", source="b", target="a"),
        )
        graph = StoryGraph(nodes=nodes, edges=edges, ending=Ending(content="x"))
        with self.assertRaises(ValueError):
            graph.longest_path_length()


if __name__ == '__main__':
    unittest.main()
