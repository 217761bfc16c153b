# /regdesk/flows/definitions.py

"""
The conversation tree for every registration service.

This module defines the flow as pure data built by a few small helpers.
Each service branch is a chain of Input nodes followed by
Confirm -> Submit -> success Terminal. Company registration forks on the
number of directors into one such chain per count. The tree is built once
at import time; ``FlowDefinition`` is read-only afterwards and shared by all sessions.
"""

from types import MappingProxyType
from typing import Dict, Iterable, List, Optional, Tuple

from regdesk.config import strings
from regdesk.models.flow import FieldSpec, FlowNode, FlowSpecEntry, MenuOption, NodeKind
from regdesk.services.validators import ACCOUNT_TYPES, BANKS, numbered_list

ROOT_ID = "root"

# Twilio content templates
TEMPLATES: Dict[str, str] = {
    "MAIN_MENU": "HX1709f2dbf88a5e5cf077a618ada6a8e0",
    "WELCOME": "HX9d97210101cad9ddb8ea5b1db8f7a6a9",
    "ERROR_RECOVERY": "HXc1d7091fad11d1b12a8a0da7666d24e5",
    "LIQUOR_LICENCE": "HX025966aebeb7702f2c3aa63b6c52b3aa",
    "IMPORT_LICENCE": "HXc950df4f8205f26ad575e4bb17878fb1",
    "TRADING_LICENCE": "HX4904b0c265a7d6b26786143b2a1d7d7e",
    "MONEY_LENDING_LICENCE": "HXd295a6ab98c74ab6d2eff531ebcddbce",
}

# (field_name, label, validator, prompt)
FieldDef = Tuple[str, str, str, str]


def outgoing(node: FlowNode) -> List[str]:
    """Forward edges of a node. The Submit ``retry`` edge is a back edge and is not included."""
    targets = [option.target for option in node.options]
    if node.next:
        targets.append(node.next)
    return targets


class FlowDefinition:
    """Immutable node graph with branch lookups."""

    def __init__(self, nodes: Iterable[FlowNode], root_id: str = ROOT_ID):
        self.declared: Tuple[FlowNode, ...] = tuple(nodes)
        self.root_id = root_id
        self.nodes = MappingProxyType({node.id: node for node in self.declared})
        self._branch_of: Dict[str, str] = {}
        for node in self.declared:
            if node.service_type:
                self._mark_branch(node.id)

    def _mark_branch(self, entry_id: str) -> None:
        stack = [entry_id]
        while stack:
            node_id = stack.pop()
            if node_id in self._branch_of or node_id == self.root_id or node_id not in self.nodes:
                continue
            self._branch_of[node_id] = entry_id
            stack.extend(outgoing(self.nodes[node_id]))

    def __contains__(self, node_id: str) -> bool:
        return node_id in self.nodes

    def __len__(self) -> int:
        return len(self.nodes)

    @property
    def root(self) -> FlowNode:
        return self.nodes[self.root_id]

    def get(self, node_id: Optional[str]) -> Optional[FlowNode]:
        if node_id is None:
            return None
        return self.nodes.get(node_id)

    def branch_entry(self, node_id: str) -> Optional[FlowNode]:
        """The entry node (the one carrying ``service_type``) of the branch containing ``node_id``."""
        entry_id = self._branch_of.get(node_id)
        return self.nodes[entry_id] if entry_id else None

    def branch_fields(self, entry_id: str) -> Tuple[FieldSpec, ...]:
        """
        Input fields of a branch, depth first with menu options walked last to
        first. Where alternative paths ask the same fields (the director-count
        chains) the fullest one sets the order; each name is listed once.
        """
        fields: List[FieldSpec] = []
        names = set()
        seen = set()
        stack = [entry_id]
        while stack:
            node_id = stack.pop()
            if node_id in seen or self._branch_of.get(node_id) != entry_id:
                continue
            seen.add(node_id)
            node = self.nodes[node_id]
            if node.kind == NodeKind.INPUT and node.field_name not in names:
                names.add(node.field_name)
                fields.append(FieldSpec(name=node.field_name, label=node.field_label, node_id=node.id))
            stack.extend(outgoing(node))
        return tuple(fields)

    def field_labels(self, entry_id: str) -> Dict[str, str]:
        return {field.name: field.label for field in self.branch_fields(entry_id)}

    def branches(self) -> List[FlowSpecEntry]:
        return [
            FlowSpecEntry(
                service_type=node.service_type,
                service_label=node.service_label,
                entry_node_id=node.id,
                fields=self.branch_fields(node.id),
            )
            for node in self.declared
            if node.service_type
        ]


# ---------------- Builders ---------------- #

def _menu_prompt(header: str, options: List[MenuOption], footer: str = strings.MENU_FOOTER) -> str:
    listing = "\n".join(f"{i}. {option.label}" for i, option in enumerate(options, start=1))
    return f"{header}\n\n{listing}\n\n{footer}"


def menu(node_id: str, header: str, options: List[Tuple[str, str]], **extra) -> FlowNode:
    menu_options = [MenuOption(label=label, target=target) for label, target in options]
    return FlowNode(
        id=node_id,
        kind=NodeKind.MENU,
        prompt=_menu_prompt(header, menu_options),
        options=tuple(menu_options),
        **extra,
    )


def input_chain(prefix: str, fields: List[FieldDef], next_id: str, intro: Optional[str] = None,
                **first_extra) -> List[FlowNode]:
    """Input nodes ``<prefix>.<field>`` in order, the last one leading to ``next_id``."""
    nodes = []
    for index, (name, label, validator, prompt) in enumerate(fields):
        is_last = index + 1 == len(fields)
        extra = first_extra if index == 0 else {}
        if index == 0 and intro:
            prompt = f"{intro}\n\n{prompt}"
        nodes.append(FlowNode(
            id=f"{prefix}.{name}",
            kind=NodeKind.INPUT,
            prompt=prompt,
            field_name=name,
            field_label=label,
            validator=validator,
            next=next_id if is_last else f"{prefix}.{fields[index + 1][0]}",
            **extra,
        ))
    return nodes


def closing(prefix: str, service_label: str) -> List[FlowNode]:
    """Confirm -> Submit -> success Terminal, with ids ``<prefix>.confirm``, ``.submit`` and ``.done``."""
    confirm_id = f"{prefix}.confirm"
    submit_id = f"{prefix}.submit"
    done_id = f"{prefix}.done"
    return [
        FlowNode(id=confirm_id, kind=NodeKind.CONFIRM, prompt=strings.CONFIRM_HEADER, next=submit_id),
        FlowNode(id=submit_id, kind=NodeKind.SUBMIT, prompt=strings.SUBMITTING, next=done_id, retry=confirm_id),
        FlowNode(id=done_id, kind=NodeKind.TERMINAL, prompt=strings.SUBMISSION_SUCCESS.format(service_label=service_label)),
    ]


def branch(
    prefix: str,
    service_type: str,
    service_label: str,
    fields: List[FieldDef],
    intro: Optional[str] = None,
    entry: Optional[Dict] = None,
) -> List[FlowNode]:
    """
    Builds a linear service branch: the Input chain, then Confirm, Submit
    and the success Terminal.

    ``entry`` turns the first node into a Menu (e.g. an information screen)
    whose option ``"proceed"`` continues into the Input chain; it may carry
    a ``template_id``. The entry node always carries the branch's service
    type and label.
    """
    marker = {"service_type": service_type, "service_label": service_label}
    first_input_id = f"{prefix}.{fields[0][0]}"

    nodes: List[FlowNode] = []
    if entry:
        options = [(label, first_input_id if target == "proceed" else target) for label, target in entry["options"]]
        extra = dict(marker)
        if entry.get("template_id"):
            extra["template_id"] = entry["template_id"]
        nodes.append(menu(f"{prefix}.info", entry["header"], options, **extra))
        marker = {}

    nodes += input_chain(prefix, fields, f"{prefix}.confirm", intro=intro, **marker)
    nodes += closing(prefix, service_label)
    return nodes


# ---------------- Company registration ---------------- #

MAX_DIRECTORS = 10

COMPANY_FIELDS: List[FieldDef] = [
    ("company_name_1", "Company Name (1st choice)", "company_name", "🏢 Please provide your *first* company name choice:"),
    ("company_name_2", "Company Name (2nd choice)", "company_name", "🏢 Please provide your *second* company name choice:"),
    ("company_name_3", "Company Name (3rd choice)", "company_name", "🏢 Please provide your *third* company name choice:"),
    ("business_type", "Business Type", "text", "📄 What type of business will the company carry out? (e.g. Private Limited Company, Retail, Consulting)"),
]

# (key, label, validator, prompt) asked once per director
DIRECTOR_FIELDS: List[FieldDef] = [
    ("full_name", "Name", "name", "👤 Please provide the director's full name:"),
    ("id_number", "ID", "national_id", "🆔 Please provide the director's national ID number (format 00-000000-A-00):"),
    ("nationality", "Nationality", "text", "🌍 What is the director's nationality?"),
    ("occupation", "Occupation", "text", "💼 What is the director's occupation?"),
    ("phone", "Phone", "phone", "📞 Please provide the director's mobile number:"),
]

COMPANY_CONTACT_FIELDS: List[FieldDef] = [
    ("contact_email", "Contact Email", "email", "📧 Please provide the email address where we should send updates about your registration:"),
    ("company_address", "Company Address", "address", "📍 Please provide the company's physical address:"),
]


def director_fields(count: int) -> List[FieldDef]:
    """``director_<n>_<key>`` for directors 1..count, each prompt headed 'Director n of count'."""
    fields = []
    for number in range(1, count + 1):
        for key, label, validator, prompt in DIRECTOR_FIELDS:
            fields.append((
                f"director_{number}_{key}",
                f"Director {number} {label}",
                validator,
                f"*Director {number} of {count}*\n{prompt}",
            ))
    return fields


def company_registration_branch(max_directors: int = MAX_DIRECTORS) -> List[FlowNode]:
    """
    Company names and business type, then a director-count menu. Each count
    leads to its own chain: every director's details, the contact fields,
    the documents check and the closing nodes. Chains never merge; each
    path collects exactly ``count`` directors.
    """
    label = "Company Registration"
    nodes = input_chain(
        "company", COMPANY_FIELDS, "company.directors",
        intro="📝 *New Company Registration*\n\nFirst, I need 3 possible names for your company in case your first choice isn't available.",
        service_type="company_registration",
        service_label=label,
    )

    count_options = []
    for count in range(1, max_directors + 1):
        prefix = f"company.directors_{count}"
        plural = "s" if count > 1 else ""
        fields = director_fields(count) + COMPANY_CONTACT_FIELDS
        count_options.append((f"{count} director{plural}", f"{prefix}.{fields[0][0]}"))

        nodes += input_chain(
            prefix, fields, f"{prefix}.documents",
            intro=f"👥 Perfect! I'll collect information for {count} director{plural}.",
        )
        nodes.append(menu(
            f"{prefix}.documents",
            "📂 *Required Documents*\n\nFor each director please have ready:\n- Copy of National ID (both sides)\n"
            "- Proof of residential address (not older than 3 months)\n\nAre your documents ready?",
            [("Documents ready", f"{prefix}.confirm"), ("Documents not ready", f"{prefix}.documents_pending")],
        ))
        nodes.append(FlowNode(
            id=f"{prefix}.documents_pending",
            kind=NodeKind.TERMINAL,
            prompt="📂 No problem. Please gather certified ID copies and proof of residence for each director, then type 'menu' to start again.",
        ))
        nodes += closing(prefix, label)

    nodes.append(menu(
        "company.directors",
        "👥 How many directors will this company have?",
        count_options,
    ))
    return nodes


# ---------------- Other branches ---------------- #

DEREGISTRATION_FIELDS: List[FieldDef] = [
    ("company_name", "Company Name", "company_name", "🏢 Please provide the registered company name:"),
    ("registration_number", "Registration Number", "text", "🔢 Please provide the company registration number:"),
    ("business_type", "Business Type", "text", "📄 What type of business does the company carry out?"),
    ("registration_date", "Registration Date", "date", "📅 When was the company registered? (YYYY-MM-DD)"),
    ("contact_name", "Contact Name", "name", "👤 Please provide your full name:"),
    ("contact_email", "Contact Email", "email", "📧 Please provide your email address:"),
    ("contact_phone", "Contact Phone", "phone", "📞 Please provide your mobile number:"),
    ("position", "Position in Company", "text", "💼 What is your position in the company?"),
    ("authority_to_act", "Authority to Act", "yes_no", "✍️ Are you authorised to act on behalf of the company? Reply YES (1) or NO (2):"),
    ("deregistration_reason", "Reason for De-Registration", "text", "📝 Why is the company being de-registered?"),
    ("outstanding_obligations", "Outstanding Obligations", "text", "💳 Please describe any outstanding obligations (tax, creditors, staff), or reply NONE:"),
]

VENDOR_FIELDS: List[FieldDef] = [
    ("applicant_name", "Applicant Name", "name", "👤 Please provide your full name:"),
    ("applicant_email", "Applicant Email", "email", "📧 Please provide your email address:"),
    ("applicant_phone", "Applicant Phone", "phone", "📞 Please provide your mobile number:"),
]

CHURCH_FIELDS: List[FieldDef] = [
    ("church_name", "Church Name", "company_name", "⛪ Please provide the name of the church:"),
    ("founder_name", "Founder Name", "name", "👤 Please provide the founder's full name:"),
    ("founder_id_number", "Founder ID", "national_id", "🆔 Please provide the founder's national ID number (format 00-000000-A-00):"),
    ("founder_address", "Founder Address", "address", "📍 Please provide the founder's physical address:"),
    ("founder_phone", "Founder Phone", "phone", "📞 Please provide the founder's mobile number:"),
    ("church_objectives", "Church Objectives", "text", "🎯 Please describe the objectives of the church:"),
]

PRAZ_FIELDS: List[FieldDef] = [
    ("company_email", "Company Email", "email", "📧 Please provide your company email address:"),
    ("bank_name", "Bank", "bank_name", f"🏦 Please select your bank:\n\n{numbered_list(BANKS)}\n\nType the number or bank name:"),
    ("account_number", "Account Number", "account_number", "🔢 Please provide your account number (numbers only):"),
    ("account_holder", "Account Holder", "name", "👤 Please provide the account holder name:"),
    ("branch_name", "Branch Name", "text", "🏢 Please provide the branch name:"),
    ("branch_code", "Branch Code", "text", "🔢 Please provide the branch code:"),
    ("account_type", "Account Type", "account_type", f"💳 Please select the account type:\n\n{numbered_list(ACCOUNT_TYPES)}\n\nType the number or account type:"),
]

COLLEGE_FIELDS: List[FieldDef] = [
    ("applicant_name", "Applicant Name", "name", "👤 Please provide your full name:"),
    ("church_name", "Church Name", "text", "⛪ Which church do you attend?"),
    ("email", "Email", "email", "📧 Please provide your email address:"),
    ("phone", "Phone", "phone", "📞 Please provide your mobile number:"),
]

UNIVERSAL_FIELDS: List[FieldDef] = [
    ("contact_name", "Name", "name", "👤 Please provide your full name:"),
    ("company_name", "Company", "company_name", "🏢 Please provide your company name:"),
    ("email", "Email", "email", "📧 Please provide your email address:"),
    ("phone", "Phone", "phone", "📞 Please provide your mobile number:"),
]


RE_REGISTRATION_FIELDS: List[FieldDef] = [
    ("company_name", "Company Name", "company_name", "🏢 Please provide your company name:"),
    ("registration_number", "Registration Number", "text", "🔢 Please provide your company registration number:"),
    ("business_type", "Business Type", "text", "📄 Please specify your business type (e.g. Private Limited, Public Limited):"),
    ("current_address", "Current Business Address", "address", "📍 Please provide your current business address:"),
    ("contact_name", "Contact Person", "name", "👤 Please provide the contact person's full name:"),
    ("contact_email", "Email Address", "email", "📧 Please provide your email address:"),
    ("contact_phone", "Phone Number", "phone", "📞 Please provide your phone number:"),
    ("position", "Position in Company", "text", "💼 Please specify your position in the company:"),
]

# (slug, label, info template, business type label, premises size label, target market label)
LICENCE_TYPES: List[Tuple[str, str, str, str, str, str]] = [
    ("liquor", "Liquor Licence", "LIQUOR_LICENCE",
     "Type of Business (Restaurant/Bar/Retail/etc.)", "Premises Size (in square meters)", "Target Market Description"),
    ("import", "Import Licence", "IMPORT_LICENCE",
     "Type of Import Business", "Premises Size (in square meters)", "Target Market Description"),
    ("trading", "Trading Licence", "TRADING_LICENCE",
     "Type of Trading (Retail/Wholesale/Online/etc.)", "Premises Size (in square meters)", "Target Market Description"),
    ("money_lending", "Money Lending Licence", "MONEY_LENDING_LICENCE",
     "Money Lending Business Model", "Available Capital Amount", "Target Client Base"),
]


def licence_fields(business_label: str, size_label: str, market_label: str) -> List[FieldDef]:
    return [
        ("company_name", "Company/Business Name", "company_name", "🏢 Please provide your company or business name:"),
        ("email", "Email Address", "email", "📧 Please provide your email address:"),
        ("address", "Business Address", "address", "📍 Please provide your business address:"),
        ("contact_person", "Contact Person", "name", "👤 Please provide the contact person's full name:"),
        ("phone", "Phone Number", "phone", "📱 Please provide your phone number:"),
        ("business_type", business_label, "text", f"🏪 {business_label}:"),
        ("premises_size", size_label, "text", f"📏 {size_label}:"),
        ("target_market", market_label, "text", f"🎯 {market_label}:"),
    ]


# (slug, label); licensing and re-registration have their own branches
OTHER_SERVICES: List[Tuple[str, str]] = [
    ("licensing", "Licensing"),
    ("tax_consultancy", "Tax Consultancy"),
    ("it_systems", "IT & Information Systems"),
    ("business_software", "Business Software"),
    ("accounting_management", "Accounting & Management"),
    ("audit_assurance", "Audit & Assurance"),
    ("microsoft_services", "Microsoft Services"),
    ("business_strategy", "Business Strategy"),
    ("re_registration", "Company Re-Registration"),
    ("vat_registration", "VAT Registration"),
]
DEDICATED_OTHER_SERVICES = {
    "licensing": "other.licensing",
    "re_registration": f"other.re_registration.{RE_REGISTRATION_FIELDS[0][0]}",
}


def build_flow() -> FlowDefinition:
    nodes: List[FlowNode] = [
        menu(
            ROOT_ID,
            strings.WELCOME_HEADER,
            [
                ("Company Registration", "company.company_name_1"),
                ("Company De-Registration", "dereg.company_name"),
                ("Vendor Number", "vendor.info"),
                ("Church Registration", "church.church_name"),
                ("PRAZ Registration", "praz.company_email"),
                ("College Registration", "college.applicant_name"),
                ("Other Services", "other"),
            ],
            template_id=TEMPLATES["MAIN_MENU"],
        ),
    ]

    nodes += company_registration_branch()
    nodes += branch(
        "dereg", "company_deregistration", "Company De-Registration", DEREGISTRATION_FIELDS,
        intro="📝 *Company De-Registration*\n\nI'll collect the details needed to de-register your company.",
    )
    nodes += branch(
        "vendor", "vendor_number", "Vendor Number", VENDOR_FIELDS,
        entry={
            "header": "🧾 *Vendor Number Registration*\n\nThis service registers your company for a Vendor Number for government contracts and procurement.\n\nProcess duration: 5-7 business days.",
            "options": [("Proceed", "proceed"), ("Back to main menu", ROOT_ID)],
        },
    )
    nodes += branch(
        "church", "church_registration", "Church Registration", CHURCH_FIELDS,
        intro="⛪ *Church Registration*",
    )
    nodes += branch(
        "praz", "praz_registration", "PRAZ Registration", PRAZ_FIELDS,
        intro="🏛️ *PRAZ Registration*\n\nTo complete your PRAZ registration I'll need your banking details and company information.",
    )
    nodes += branch(
        "college", "college_registration", "College Registration", COLLEGE_FIELDS,
        intro="🎓 *College Registration*",
    )

    nodes.append(menu(
        "other",
        strings.OTHER_SERVICES_HEADER,
        [
            (label, DEDICATED_OTHER_SERVICES.get(slug, f"other.{slug}.{UNIVERSAL_FIELDS[0][0]}"))
            for slug, label in OTHER_SERVICES
        ],
    ))
    for slug, label in OTHER_SERVICES:
        if slug in DEDICATED_OTHER_SERVICES:
            continue
        nodes += branch(
            f"other.{slug}", "universal", label, UNIVERSAL_FIELDS,
            intro=f"📋 *{label}*\n\nI'll take a few details so our team can contact you.",
        )

    nodes.append(menu(
        "other.licensing",
        "📜 *Licensing*\n\nWhich licence would you like to apply for?",
        [(label, f"other.licensing.{slug}.info") for slug, label, *_ in LICENCE_TYPES],
    ))
    for slug, label, template_key, business_label, size_label, market_label in LICENCE_TYPES:
        nodes += branch(
            f"other.licensing.{slug}", "licence_application", label,
            licence_fields(business_label, size_label, market_label),
            intro=f"📝 *{label} Application*",
            entry={
                "header": f"📜 *{label}*\n\nWe will contact you within 5-7 business days with updates on your application.",
                "options": [("Apply", "proceed"), ("Back to main menu", ROOT_ID)],
                "template_id": TEMPLATES[template_key],
            },
        )

    nodes += branch(
        "other.re_registration", "company_re_registration", "Company Re-Registration", RE_REGISTRATION_FIELDS,
        intro="📝 *Company Re-Registration*\n\nLet's collect your company information.",
    )

    return FlowDefinition(nodes, root_id=ROOT_ID)


# Globally accessible instance
FLOW = build_flow()
