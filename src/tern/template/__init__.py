"""tern.template — Template synthesis."""

from tern.template.synth import Template, TemplateResource, synthesize

__all__ = ["Template", "TemplateResource", "synthesize"]
