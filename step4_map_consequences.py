"""Step 4: Map every choice to a consequence."""
import logging
from weaver.models import Consequence
from weaver.personas import style_consequence_text
from weaver.tables import get_consequence_table


logger = logging.getLogger(__name__)


class ConsequenceMapper:
    """Look up the consequence descriptor for a choice type.

    Total over choice types: anything without an entry gets the neutral default.
    """

    def __init__(self, config):
        self.config = config
        self.default, self.by_type = get_consequence_table()

    def descriptor_for(self, choice_type):
        return self.by_type.get(choice_type, self.default)

    def map(self, choice, persona_key=None):
        descriptor = self.descriptor_for(choice.type)
        if choice.type not in self.by_type:
            logger.debug(f"No consequence entry for choice type '{choice.type}', using default")

        text = descriptor.text
        if persona_key:
            text = style_consequence_text(text, persona_key)

        return Consequence(
            id=f"consequence_{choice.id}",
            choice_id=choice.id,
            text=text,
            consequence_type=descriptor.consequence_type,
            emotional_tone=descriptor.emotional_tone,
            next_scene_modifier=descriptor.modifier,
        )

    def map_all(self, choices, persona_key=None):
        """
        Map each choice to its consequence.

        Returns:
            Dict of choice id -> Consequence
        """
        consequences = {choice.id: self.map(choice, persona_key) for choice in choices}
        logger.info(f"Mapped {len(consequences)} consequences")
        return consequences


def run_step4(config, choices, persona_key=None):
    """Run step 4: consequence mapping."""
    return ConsequenceMapper(config).map_all(choices, persona_key)
