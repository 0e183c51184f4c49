"""Built-in KPI rule table, used until an admin saves a configuration."""

from __future__ import annotations

import copy

from .schemas import KPIRuleTable

ALL_RECIPIENTS = ["FE", "Coordinator", "Manager", "HOD", "Compliance Team"]

DEFAULT_RULE_TABLE = {
    "version": 0,
    "metrics": [
        {
            "key": "tat",
            "label": "TAT",
            "weightage": 20,
            "thresholds": [
                {"operator": ">=", "value": 95, "score": 20, "label": "Excellent (95%+)"},
                {"operator": ">=", "value": 90, "score": 10, "label": "Good (90-94%)"},
                {"operator": ">=", "value": 85, "score": 5, "label": "Average (85-89%)"},
                {"operator": "<", "value": 85, "score": 0, "label": "Poor (<85%)"},
            ],
        },
        {
            "key": "major_negativity",
            "label": "Major Negativity",
            "weightage": 20,
            "thresholds": [
                {"operator": ">=", "value": 2.5, "score": 20, "label": "High (2.5%+)"},
                {"operator": ">=", "value": 2.0, "score": 15, "label": "Medium (2.0-2.4%)"},
                {"operator": ">=", "value": 1.5, "score": 5, "label": "Low (1.5-1.9%)"},
                {"operator": "<", "value": 1.5, "score": 0, "label": "Excellent (<1.5%)"},
            ],
        },
        {
            "key": "quality",
            "label": "Quality Concern",
            "weightage": 20,
            "thresholds": [
                {"operator": "==", "value": 0, "score": 20, "label": "Perfect (0%)"},
                {"operator": "<=", "value": 0.25, "score": 15, "label": "Good (0-0.25%)"},
                {"operator": "<=", "value": 0.5, "score": 10, "label": "Average (0.26-0.5%)"},
                {"operator": ">", "value": 0.5, "score": 0, "label": "Poor (>0.5%)"},
            ],
        },
        {
            "key": "neighbor_check",
            "label": "Neighbor Check",
            "weightage": 10,
            "thresholds": [
                {"operator": ">=", "value": 90, "score": 10, "label": "Excellent (90%+)"},
                {"operator": ">=", "value": 85, "score": 5, "label": "Good (85-89%)"},
                {"operator": ">=", "value": 80, "score": 2, "label": "Average (80-84%)"},
                {"operator": "<", "value": 80, "score": 0, "label": "Poor (<80%)"},
            ],
        },
        {
            "key": "negativity",
            "label": "Negativity",
            "weightage": 10,
            "thresholds": [
                {"operator": ">=", "value": 25, "score": 10, "label": "High (25%+)"},
                {"operator": ">=", "value": 20, "score": 5, "label": "Medium (20-24%)"},
                {"operator": ">=", "value": 15, "score": 2, "label": "Low (15-19%)"},
                {"operator": "<", "value": 15, "score": 0, "label": "Excellent (<15%)"},
            ],
        },
        {
            "key": "app_usage",
            "label": "App Usage",
            "weightage": 10,
            "thresholds": [
                {"operator": ">=", "value": 90, "score": 10, "label": "Excellent (90%+)"},
                {"operator": ">=", "value": 85, "score": 5, "label": "Good (85-89%)"},
                {"operator": ">=", "value": 80, "score": 2, "label": "Average (80-84%)"},
                {"operator": "<", "value": 80, "score": 0, "label": "Poor (<80%)"},
            ],
        },
        {
            "key": "insufficiency",
            "label": "Insufficiency",
            "weightage": 10,
            "thresholds": [
                {"operator": "<", "value": 1, "score": 10, "label": "Excellent (<1%)"},
                {"operator": "<=", "value": 1.5, "score": 5, "label": "Good (1-1.5%)"},
                {"operator": "<=", "value": 2, "score": 2, "label": "Average (1.6-2%)"},
                {"operator": ">", "value": 2, "score": 0, "label": "Poor (>2%)"},
            ],
        },
    ],
    "triggers": [
        {
            "id": "score_85",
            "trigger_type": "score_based",
            "condition": "Overall KPI Score",
            "threshold": 85,
            "actions": ["None"],
            "email_recipients": ["FE", "Manager", "HOD"],
            "priority": "medium",
        },
        {
            "id": "score_70",
            "trigger_type": "score_based",
            "condition": "Overall KPI Score",
            "threshold": 70,
            "actions": ["Audit Call"],
            "email_recipients": ["Compliance Team", "HOD"],
            "priority": "medium",
        },
        {
            "id": "score_50",
            "trigger_type": "score_based",
            "condition": "Overall KPI Score",
            "threshold": 50,
            "actions": ["Audit Call", "Cross-check last 3 months data"],
            "email_recipients": ["Compliance Team", "HOD"],
            "priority": "medium",
        },
        {
            "id": "score_40",
            "trigger_type": "score_based",
            "condition": "Overall KPI Score",
            "threshold": 40,
            "actions": [
                "Basic Training Module",
                "Audit Call",
                "Cross-check last 3 months data",
                "Dummy Audit Case",
            ],
            "email_recipients": ALL_RECIPIENTS,
            "priority": "high",
        },
        {
            "id": "score_0",
            "trigger_type": "score_based",
            "condition": "Overall KPI Score",
            "threshold": 0,
            "actions": [
                "Basic Training Module",
                "Audit Call",
                "Cross-check last 3 months data",
                "Dummy Audit Case",
                "Warning Letter",
            ],
            "email_recipients": ALL_RECIPIENTS,
            "priority": "high",
        },
        {
            "id": "negativity_handling",
            "trigger_type": "condition_based",
            "condition": "Major Negativity > 0% AND General Negativity < 25%",
            "clauses": [
                {"metric": "major_negativity", "operator": ">", "value": 0},
                {"metric": "negativity", "operator": "<", "value": 25},
            ],
            "actions": ["Negativity Handling Training Module", "Audit Call"],
            "email_recipients": ALL_RECIPIENTS,
            "priority": "medium",
        },
        {
            "id": "quality_concern",
            "trigger_type": "condition_based",
            "condition": "Quality Concern > 1%",
            "clauses": [{"metric": "quality", "operator": ">", "value": 1}],
            "actions": ["Do's & Don'ts Training Module", "Audit Call", "RCA of complaints"],
            "email_recipients": ALL_RECIPIENTS,
            "priority": "high",
        },
        {
            "id": "app_usage",
            "trigger_type": "condition_based",
            "condition": "Cases Done on App < 80%",
            "clauses": [{"metric": "app_usage", "operator": "<", "value": 80}],
            "actions": ["Application Usage Training"],
            "email_recipients": ALL_RECIPIENTS,
            "priority": "medium",
        },
        {
            "id": "insufficiency",
            "trigger_type": "condition_based",
            "condition": "Insufficiency > 2%",
            "clauses": [{"metric": "insufficiency", "operator": ">", "value": 2}],
            "actions": ["Cross-verification of selected insuff cases by another FE"],
            "email_recipients": ["Compliance Team", "HOD"],
            "priority": "high",
        },
    ],
}


def default_rule_table() -> KPIRuleTable:
    return KPIRuleTable.model_validate(copy.deepcopy(DEFAULT_RULE_TABLE))
