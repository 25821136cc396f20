"""
Versioned attribute manifests for the EAV setup workflow.

Each manifest names one entity type, its storage strategy, the domain flag
column the rollback resets, and attribute specs grouped by category.
Setup is idempotent on attribute name, so manifests may only grow.
"""

from dataclasses import dataclass, field

from campus_eav.db.models import Assessment, Role, User
from campus_eav.schemas.attribute import AttributeSpec


@dataclass(frozen=True)
class SetupManifest:
    key: str
    version: str
    entity_type: str
    table_name: str
    description: str
    use_entity_specific_table: bool
    flag_model: type
    flag_attribute: str
    categories: dict[str, list[AttributeSpec]] = field(default_factory=dict)

    def iter_specs(self):
        for category, specs in self.categories.items():
            for spec in specs:
                yield category, spec

    @property
    def attribute_count(self) -> int:
        return sum(len(specs) for specs in self.categories.values())


def _specs(rows: list[dict]) -> list[AttributeSpec]:
    return [AttributeSpec(**row) for row in rows]


# =============================================================================
# User Profile (generic table)
# =============================================================================

COMMON_ATTRIBUTES = [
    {"name": "common_preferred_name", "display_name": "Preferred Name",
     "description": "Name the user prefers to be called", "sort_order": 1},
    {"name": "common_pronouns", "display_name": "Pronouns",
     "description": "Preferred pronouns (e.g., he/him, she/her, they/them)", "sort_order": 2},
    {"name": "common_phone_number", "display_name": "Phone Number",
     "description": "Primary contact phone number", "sort_order": 3},
    {"name": "common_secondary_email", "display_name": "Secondary Email",
     "description": "Alternative email address", "sort_order": 4},
    {"name": "common_address_street", "display_name": "Street Address",
     "description": "Street address line", "sort_order": 5},
    {"name": "common_address_city", "display_name": "City",
     "description": "City name", "sort_order": 6},
    {"name": "common_address_state", "display_name": "State/Province",
     "description": "State or province", "sort_order": 7},
    {"name": "common_address_postal_code", "display_name": "Postal Code",
     "description": "ZIP or postal code", "sort_order": 8},
    {"name": "common_address_country", "display_name": "Country",
     "description": "Country of residence", "sort_order": 9},
    {"name": "common_date_of_birth", "display_name": "Date of Birth",
     "description": "Date of birth", "value_type": "date", "sort_order": 10},
    {"name": "common_nationality", "display_name": "Nationality",
     "description": "Nationality", "sort_order": 11},
    {"name": "common_profile_picture_url", "display_name": "Profile Picture URL",
     "description": "URL to the profile picture", "sort_order": 12},
    {"name": "common_bio", "display_name": "Biography",
     "description": "Short biography or about me text", "value_type": "text", "sort_order": 13},
    {"name": "common_linkedin_profile", "display_name": "LinkedIn Profile",
     "description": "LinkedIn profile URL", "sort_order": 14},
]

STUDENT_ATTRIBUTES = [
    {"name": "student_id", "display_name": "Student ID",
     "description": "Official student identification number", "sort_order": 101},
    {"name": "student_major", "display_name": "Major",
     "description": "Primary field of study", "sort_order": 102},
    {"name": "student_minor", "display_name": "Minor",
     "description": "Secondary field of study", "sort_order": 103},
    {"name": "student_gpa", "display_name": "GPA",
     "description": "Current grade point average", "value_type": "decimal",
     "sort_order": 104, "validation_rules": {"min": 0, "max": 4.0}},
    {"name": "student_expected_graduation_year", "display_name": "Expected Graduation Year",
     "description": "Expected year of graduation", "value_type": "integer",
     "sort_order": 105, "validation_rules": {"min": 2000, "max": 2100}},
    {"name": "student_enrollment_date", "display_name": "Enrollment Date",
     "description": "Date of initial enrollment", "value_type": "date", "sort_order": 106},
    {"name": "student_classification", "display_name": "Classification",
     "description": "Academic classification", "sort_order": 107,
     "validation_rules": {"enum": ["Freshman", "Sophomore", "Junior", "Senior", "Graduate", "PhD"]}},
    {"name": "student_enrollment_status", "display_name": "Enrollment Status",
     "description": "Current enrollment status", "sort_order": 108,
     "validation_rules": {"enum": ["Full-time", "Part-time", "Leave of Absence", "Withdrawn"]}},
    {"name": "student_emergency_contact_name", "display_name": "Emergency Contact Name",
     "description": "Name of emergency contact person", "sort_order": 109},
    {"name": "student_emergency_contact_phone", "display_name": "Emergency Contact Phone",
     "description": "Phone number of emergency contact", "sort_order": 110},
    {"name": "student_emergency_contact_relationship",
     "display_name": "Emergency Contact Relationship",
     "description": "Relationship to emergency contact (Parent, Sibling, etc.)", "sort_order": 111},
    {"name": "student_housing_status", "display_name": "Housing Status",
     "description": "On-campus or off-campus housing", "sort_order": 112,
     "validation_rules": {"enum": ["On-campus", "Off-campus", "Commuter"]}},
    {"name": "student_meal_plan", "display_name": "Meal Plan",
     "description": "Current meal plan selection", "sort_order": 113},
    {"name": "student_financial_aid_status", "display_name": "Financial Aid Status",
     "description": "Financial aid eligibility status", "sort_order": 114},
    {"name": "student_academic_standing", "display_name": "Academic Standing",
     "description": "Current academic standing", "sort_order": 115,
     "validation_rules": {"enum": [
         "Good Standing", "Academic Probation", "Academic Warning", "Dean's List",
     ]}},
]

INSTRUCTOR_ATTRIBUTES = [
    {"name": "instructor_research_interests", "display_name": "Research Interests",
     "description": "Areas of research interest", "value_type": "json", "sort_order": 201},
    {"name": "instructor_academic_rank", "display_name": "Academic Rank",
     "description": "Academic rank", "sort_order": 202,
     "validation_rules": {"enum": [
         "Adjunct", "Lecturer", "Assistant Professor", "Associate Professor",
         "Professor", "Distinguished Professor", "Emeritus",
     ]}},
    {"name": "instructor_tenure_status", "display_name": "Tenure Status",
     "description": "Current tenure status", "sort_order": 203,
     "validation_rules": {"enum": ["Non-tenure Track", "Tenure Track", "Tenured"]}},
    {"name": "instructor_phone_extension", "display_name": "Phone Extension",
     "description": "Office phone extension", "sort_order": 204},
    {"name": "instructor_fax", "display_name": "Fax Number",
     "description": "Office fax number", "sort_order": 205},
    {"name": "instructor_personal_website", "display_name": "Personal Website",
     "description": "Personal or academic website URL", "sort_order": 206},
    {"name": "instructor_office_hours_details", "display_name": "Office Hours Details",
     "description": "Office hours schedule with locations", "value_type": "json",
     "sort_order": 207},
    {"name": "instructor_publications", "display_name": "Publications",
     "description": "List of academic publications", "value_type": "json", "sort_order": 208},
    {"name": "instructor_education", "display_name": "Education",
     "description": "Educational background and degrees", "value_type": "json",
     "sort_order": 209},
    {"name": "instructor_courses_taught", "display_name": "Courses Taught",
     "description": "List of courses typically taught", "value_type": "json", "sort_order": 210},
    {"name": "instructor_cv_url", "display_name": "CV URL",
     "description": "URL to curriculum vitae document", "sort_order": 211},
    {"name": "instructor_google_scholar_id", "display_name": "Google Scholar ID",
     "description": "Google Scholar profile identifier", "sort_order": 212},
    {"name": "instructor_orcid", "display_name": "ORCID",
     "description": "ORCID identifier for researcher", "sort_order": 213},
    {"name": "instructor_expertise_keywords", "display_name": "Expertise Keywords",
     "description": "Keywords describing areas of expertise", "value_type": "json",
     "sort_order": 214},
]

PARENT_ATTRIBUTES = [
    {"name": "parent_relationship_type", "display_name": "Relationship Type",
     "description": "Relationship to student", "sort_order": 301,
     "validation_rules": {"enum": [
         "Mother", "Father", "Guardian", "Stepmother", "Stepfather", "Grandparent", "Other",
     ]}},
    {"name": "parent_primary_contact", "display_name": "Primary Contact",
     "description": "Whether this is the primary contact for the student",
     "value_type": "boolean", "sort_order": 302, "default_value": "false"},
    {"name": "parent_occupation", "display_name": "Occupation",
     "description": "Occupation or profession", "sort_order": 303},
    {"name": "parent_employer", "display_name": "Employer",
     "description": "Current employer name", "sort_order": 304},
    {"name": "parent_home_phone", "display_name": "Home Phone",
     "description": "Home phone number", "sort_order": 305},
    {"name": "parent_work_phone", "display_name": "Work Phone",
     "description": "Work phone number", "sort_order": 306},
    {"name": "parent_mobile_phone", "display_name": "Mobile Phone",
     "description": "Mobile phone number", "sort_order": 307},
    {"name": "parent_preferred_contact_method", "display_name": "Preferred Contact Method",
     "description": "Preferred method of contact", "sort_order": 308,
     "validation_rules": {"enum": ["Email", "Phone", "Text", "Mail"]}},
    {"name": "parent_best_contact_time", "display_name": "Best Contact Time",
     "description": "Best time to reach this parent", "sort_order": 309},
    {"name": "parent_emergency_authorized", "display_name": "Emergency Authorized",
     "description": "Authorized to be contacted in emergencies",
     "value_type": "boolean", "sort_order": 310, "default_value": "true"},
    {"name": "parent_pickup_authorized", "display_name": "Pickup Authorized",
     "description": "Authorized to pick up the student",
     "value_type": "boolean", "sort_order": 311, "default_value": "false"},
    {"name": "parent_financial_responsible", "display_name": "Financially Responsible",
     "description": "Whether this parent is financially responsible",
     "value_type": "boolean", "sort_order": 312, "default_value": "false"},
    {"name": "parent_student_ids", "display_name": "Student IDs",
     "description": "IDs of students this parent is associated with",
     "value_type": "json", "sort_order": 313},
]

STAFF_ATTRIBUTES = [
    {"name": "staff_employee_id", "display_name": "Employee ID",
     "description": "Official employee identification number", "sort_order": 401},
    {"name": "staff_position_title", "display_name": "Position Title",
     "description": "Official job title", "sort_order": 402},
    {"name": "staff_department", "display_name": "Department",
     "description": "Department or unit name", "sort_order": 403},
    {"name": "staff_hire_date", "display_name": "Hire Date",
     "description": "Date of hire", "value_type": "date", "sort_order": 404},
    {"name": "staff_employment_type", "display_name": "Employment Type",
     "description": "Type of employment", "sort_order": 405,
     "validation_rules": {"enum": ["Full-time", "Part-time", "Contract", "Temporary", "Intern"]}},
    {"name": "staff_manager_id", "display_name": "Manager ID",
     "description": "User ID of direct manager", "sort_order": 406},
    {"name": "staff_office_number", "display_name": "Office Number",
     "description": "Office room number", "sort_order": 407},
    {"name": "staff_office_building", "display_name": "Office Building",
     "description": "Building where office is located", "sort_order": 408},
    {"name": "staff_phone_extension", "display_name": "Phone Extension",
     "description": "Office phone extension", "sort_order": 409},
    {"name": "staff_work_schedule", "display_name": "Work Schedule",
     "description": "Typical work schedule", "value_type": "json", "sort_order": 410},
    {"name": "staff_skills", "display_name": "Skills",
     "description": "Professional skills and competencies", "value_type": "json",
     "sort_order": 411},
    {"name": "staff_certifications", "display_name": "Certifications",
     "description": "Professional certifications", "value_type": "json", "sort_order": 412},
    {"name": "staff_emergency_contact_name", "display_name": "Emergency Contact Name",
     "description": "Name of emergency contact", "sort_order": 413},
    {"name": "staff_emergency_contact_phone", "display_name": "Emergency Contact Phone",
     "description": "Phone number of emergency contact", "sort_order": 414},
    {"name": "staff_employment_status", "display_name": "Employment Status",
     "description": "Current employment status", "sort_order": 415,
     "validation_rules": {"enum": ["Active", "On Leave", "Suspended", "Terminated"]}},
]

USER_PROFILE_MANIFEST = SetupManifest(
    key="user-profile",
    version="1.0.0",
    entity_type="User",
    table_name="users",
    description="User entity for extensible profile storage (students, instructors, parents, staff)",
    use_entity_specific_table=False,
    flag_model=User,
    flag_attribute="profile_eav_enabled",
    categories={
        "common": _specs(COMMON_ATTRIBUTES),
        "student": _specs(STUDENT_ATTRIBUTES),
        "instructor": _specs(INSTRUCTOR_ATTRIBUTES),
        "parent": _specs(PARENT_ATTRIBUTES),
        "staff": _specs(STAFF_ATTRIBUTES),
    },
)


# =============================================================================
# Assessment Metadata (entity-specific table)
# =============================================================================

ASSESSMENT_ATTRIBUTES = [
    {"name": "grading_rubric", "display_name": "Grading Rubric",
     "description": "Detailed grading criteria and point distribution",
     "value_type": "text", "sort_order": 1},
    {"name": "difficulty_level", "display_name": "Difficulty Level",
     "description": "Assessment difficulty", "sort_order": 2,
     "validation_rules": {"enum": ["Easy", "Medium", "Hard", "Expert"]}},
    {"name": "estimated_duration", "display_name": "Estimated Duration",
     "description": "Expected completion time in minutes", "value_type": "integer",
     "sort_order": 3, "validation_rules": {"min": 1, "max": 600}},
    {"name": "prerequisite_topics", "display_name": "Prerequisite Topics",
     "description": "Topics students should know before attempting",
     "value_type": "json", "sort_order": 4},
    {"name": "learning_objectives", "display_name": "Learning Objectives",
     "description": "What students should learn from this assessment",
     "value_type": "json", "sort_order": 5},
    {"name": "instructor_notes", "display_name": "Instructor Notes",
     "description": "Private notes for instructors", "value_type": "text", "sort_order": 6},
    {"name": "proctoring_required", "display_name": "Proctoring Required",
     "description": "Whether proctoring is required", "value_type": "boolean",
     "sort_order": 7, "default_value": "false"},
    {"name": "calculator_allowed", "display_name": "Calculator Allowed",
     "description": "Whether calculator use is permitted", "value_type": "boolean",
     "sort_order": 8, "default_value": "false"},
    {"name": "reference_materials", "display_name": "Allowed Reference Materials",
     "description": "Permitted reference materials (open book, notes, etc.)",
     "value_type": "text", "sort_order": 9},
    {"name": "accommodation_notes", "display_name": "Accommodation Notes",
     "description": "Notes for accessibility accommodations", "value_type": "text",
     "sort_order": 10},
    {"name": "assessment_weight", "display_name": "Assessment Weight",
     "description": "Weight in final grade calculation (0-100%)", "value_type": "decimal",
     "sort_order": 11, "validation_rules": {"min": 0, "max": 100}},
    {"name": "retry_delay_hours", "display_name": "Retry Delay (Hours)",
     "description": "Minimum hours between retry attempts", "value_type": "integer",
     "sort_order": 12, "validation_rules": {"min": 0, "max": 720}, "default_value": "0"},
    {"name": "show_answers_after", "display_name": "Show Answers After Submission",
     "description": "When to reveal correct answers", "sort_order": 13,
     "validation_rules": {"enum": ["immediately", "after_due_date", "never"]},
     "default_value": "never"},
    {"name": "shuffle_questions", "display_name": "Shuffle Questions",
     "description": "Randomize question order for each student", "value_type": "boolean",
     "sort_order": 14, "default_value": "false"},
    {"name": "shuffle_options", "display_name": "Shuffle Options",
     "description": "Randomize answer options for multiple choice questions",
     "value_type": "boolean", "sort_order": 15, "default_value": "false"},
    {"name": "passing_score", "display_name": "Passing Score",
     "description": "Minimum score to pass (percentage)", "value_type": "decimal",
     "sort_order": 16, "validation_rules": {"min": 0, "max": 100}},
    {"name": "custom_metadata", "display_name": "Custom Metadata",
     "description": "Additional custom metadata", "value_type": "json", "sort_order": 99},
]

ASSESSMENT_METADATA_MANIFEST = SetupManifest(
    key="assessment-metadata",
    version="1.0.0",
    entity_type="Assessment",
    table_name="assessments",
    description="Assessment entity for extensible metadata storage",
    use_entity_specific_table=True,
    flag_model=Assessment,
    flag_attribute="metadata_eav_enabled",
    categories={"assessment": _specs(ASSESSMENT_ATTRIBUTES)},
)


# =============================================================================
# Role Permissions (entity-specific table)
# =============================================================================

ROLE_PERMISSION_ATTRIBUTES = [
    {"name": "can_create_users", "display_name": "Can Create Users",
     "description": "Permission to create new user accounts", "value_type": "boolean",
     "default_value": "false"},
    {"name": "can_manage_courses", "display_name": "Can Manage Courses",
     "description": "Permission to create, edit, and delete courses", "value_type": "boolean",
     "default_value": "false"},
    {"name": "can_view_grades", "display_name": "Can View Grades",
     "description": "Permission to view student grades", "value_type": "boolean",
     "default_value": "false"},
    {"name": "can_edit_grades", "display_name": "Can Edit Grades",
     "description": "Permission to modify student grades", "value_type": "boolean",
     "default_value": "false"},
    {"name": "can_manage_enrollments", "display_name": "Can Manage Enrollments",
     "description": "Permission to approve or reject enrollment requests",
     "value_type": "boolean", "default_value": "false"},
    {"name": "can_view_reports", "display_name": "Can View Reports",
     "description": "Permission to access administrative reports", "value_type": "boolean",
     "default_value": "false"},
    {"name": "can_manage_facilities", "display_name": "Can Manage Facilities",
     "description": "Permission to manage facility bookings and maintenance",
     "value_type": "boolean", "default_value": "false"},
    {"name": "can_manage_hr", "display_name": "Can Manage HR",
     "description": "Permission to manage HR functions like payroll and leave",
     "value_type": "boolean", "default_value": "false"},
    {"name": "can_view_announcements", "display_name": "Can View Announcements",
     "description": "Permission to view system announcements", "value_type": "boolean",
     "default_value": "true"},
    {"name": "can_create_announcements", "display_name": "Can Create Announcements",
     "description": "Permission to create system-wide announcements", "value_type": "boolean",
     "default_value": "false"},
    {"name": "max_course_load", "display_name": "Maximum Course Load",
     "description": "Maximum number of courses this role can enroll in or teach",
     "value_type": "integer", "default_value": "5", "validation_rules": {"min": 0}},
    {"name": "dashboard_widgets", "display_name": "Dashboard Widgets",
     "description": "Widget ids visible on the dashboard", "value_type": "json",
     "default_value": "[]"},
    {"name": "feature_flags", "display_name": "Feature Flags",
     "description": "Feature toggles for this role", "value_type": "json",
     "default_value": "{}"},
    {"name": "access_level", "display_name": "Access Level",
     "description": "Numeric access level (1=basic, 10=admin)", "value_type": "integer",
     "default_value": "1", "validation_rules": {"min": 1, "max": 10}},
    {"name": "permission_scope", "display_name": "Permission Scope",
     "description": "Scope of permissions", "default_value": "department",
     "validation_rules": {"enum": ["department", "faculty", "university"]}},
]

ROLE_PERMISSIONS_MANIFEST = SetupManifest(
    key="role-permissions",
    version="1.0.0",
    entity_type="Role",
    table_name="roles",
    description="User roles with dynamic permission attributes",
    use_entity_specific_table=True,
    flag_model=Role,
    flag_attribute="permission_eav_enabled",
    categories={
        "permissions": _specs(
            [
                {**row, "sort_order": position}
                for position, row in enumerate(ROLE_PERMISSION_ATTRIBUTES)
            ]
        ),
    },
)


def _grants(*names: str) -> dict[str, bool]:
    return {
        row["name"]: row["name"] in names
        for row in ROLE_PERMISSION_ATTRIBUTES
        if row.get("value_type") == "boolean"
    }


# Seed values per role name, applied by role_permission_service.seed_default_permissions
ROLE_PERMISSION_DEFAULTS: dict[str, dict] = {
    "admin": {
        **_grants(
            "can_create_users", "can_manage_courses", "can_view_grades", "can_edit_grades",
            "can_manage_enrollments", "can_view_reports", "can_manage_facilities",
            "can_manage_hr", "can_view_announcements", "can_create_announcements",
        ),
        "max_course_load": 10, "access_level": 10, "permission_scope": "university",
    },
    "instructor": {
        **_grants(
            "can_manage_courses", "can_view_grades", "can_edit_grades", "can_view_reports",
            "can_view_announcements", "can_create_announcements",
        ),
        "max_course_load": 6, "access_level": 5, "permission_scope": "department",
    },
    "student": {
        **_grants("can_view_grades", "can_view_announcements"),
        "max_course_load": 6, "access_level": 1, "permission_scope": "department",
    },
    "advisor": {
        **_grants(
            "can_view_grades", "can_manage_enrollments", "can_view_reports",
            "can_view_announcements", "can_create_announcements",
        ),
        "max_course_load": 0, "access_level": 4, "permission_scope": "department",
    },
    "hr": {
        **_grants(
            "can_create_users", "can_view_reports", "can_manage_hr",
            "can_view_announcements", "can_create_announcements",
        ),
        "max_course_load": 0, "access_level": 6, "permission_scope": "university",
    },
    "ta": {
        **_grants("can_view_grades", "can_edit_grades", "can_view_announcements"),
        "max_course_load": 3, "access_level": 3, "permission_scope": "department",
    },
    "parent": {
        **_grants("can_view_grades", "can_view_announcements"),
        "max_course_load": 0, "access_level": 2, "permission_scope": "department",
    },
}


MANIFESTS: dict[str, SetupManifest] = {
    manifest.key: manifest
    for manifest in (
        USER_PROFILE_MANIFEST, ASSESSMENT_METADATA_MANIFEST, ROLE_PERMISSIONS_MANIFEST
    )
}


def get_manifest(key: str) -> SetupManifest:
    try:
        return MANIFESTS[key]
    except KeyError:
        raise ValueError(f"Unknown manifest '{key}'. Choose from: {', '.join(MANIFESTS)}") from None
