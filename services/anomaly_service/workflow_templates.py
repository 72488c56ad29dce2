# workflow_templates.py - Built-in workflow templates

from typing import Any, Dict, List, Optional
from datetime import datetime

from .models import WorkflowDefinition, WorkflowStep, WorkflowTrigger, WorkflowType, DefinitionStatus

WORKFLOW_TEMPLATES: List[Dict[str, Any]] = [
    {
        "name": "Default Anomaly Workflow",
        "type": WorkflowType.DEFAULT,
        "description": "Standard anomaly processing with AI analysis and human review",
        "triggers": [{"type": "anomaly_detected"}],
        "steps": [
            {"id": "intake", "name": "Intake", "type": "intake", "next_steps": ["ai_analysis"]},
            {"id": "ai_analysis", "name": "AI Analysis", "type": "ai_analysis", "next_steps": ["verification"]},
            {"id": "verification", "name": "Cross-Verification", "type": "verification", "next_steps": ["decision"]},
            {"id": "decision", "name": "Decision", "type": "decision", "next_steps": ["human_review", "approval"]},
            {"id": "human_review", "name": "Human Review", "type": "human_review", "next_steps": ["approval"]},
            {"id": "approval", "name": "Approval", "type": "approval", "next_steps": ["response"]},
            {"id": "response", "name": "Response", "type": "response", "next_steps": ["notification"]},
            {"id": "notification", "name": "Notification", "type": "notification", "next_steps": []}
        ]
    },
    {
        "name": "Emergency Response Workflow",
        "type": WorkflowType.EMERGENCY,
        "description": "Fast-track workflow for critical anomalies",
        "triggers": [{"type": "severity_threshold", "conditions": {"severity": "critical"}}],
        "steps": [
            {"id": "emergency_intake", "name": "Emergency Intake", "type": "intake", "next_steps": ["ai_triage"]},
            {"id": "ai_triage", "name": "AI Triage", "type": "ai_analysis", "next_steps": ["impact"]},
            {"id": "impact", "name": "Impact Assessment", "type": "response", "next_steps": ["notification"]},
            {"id": "notification", "name": "Emergency Notification", "type": "notification", "next_steps": []}
        ]
    }
]


def get_workflow_templates() -> List[Dict[str, Any]]:
    return [
        {**template, "type": template["type"].value}
        for template in WORKFLOW_TEMPLATES
    ]


def build_definition_from_template(template_type: WorkflowType, name: Optional[str] = None,
                                   status: DefinitionStatus = DefinitionStatus.DRAFT) -> WorkflowDefinition:
    """Instantiate a fresh definition from the template of the given type."""
    template = next((t for t in WORKFLOW_TEMPLATES if t["type"] == template_type), None)
    if template is None:
        raise ValueError(f"No template for workflow type: {template_type.value}")

    return WorkflowDefinition(
        name=name or f"{template['name']} - {int(datetime.utcnow().timestamp() * 1000)}",
        description=template["description"],
        type=template["type"],
        status=status,
        steps=[WorkflowStep(**step) for step in template["steps"]],
        triggers=[WorkflowTrigger(**trigger) for trigger in template["triggers"]]
    )
