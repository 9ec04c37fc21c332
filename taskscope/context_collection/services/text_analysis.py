"""
Text Analysis

Turns the free text of a task into the signals the rest of the pipeline
searches with: weighted keywords, typed entities and an intent label.

Two extractors live here:
- SimpleSignalExtractor: frequency/regex fallback, used when nothing better
  is configured.
- TextAnalyzer: TF-IDF keywords, confidence-scored entities and per task
  type intent classification.

Usage:
    analyzer = TextAnalyzer()
    bundle = analyzer.extract(task.combined_text(), task.task_type)
    bundle = bundle.with_overrides(keywords=task.keywords, entities=task.entities)
"""

import asyncio
import logging
import math
import re
from abc import ABC, abstractmethod
from collections import Counter
from dataclasses import dataclass, field, replace
from typing import Dict, Iterable, List, Optional

logger = logging.getLogger(__name__)

# ============================================================================
# VOCABULARY
# ============================================================================

# Stop-words for the fallback keyword extractor
SIMPLE_STOP_WORDS = frozenset([
    "the", "and", "or", "but", "in", "on", "at", "to", "for", "of", "with", "by",
    "from", "up", "about", "into", "over", "after", "this", "that", "these", "those",
    "they", "them", "their", "there", "then", "than", "when", "where", "why", "how",
    "what", "which", "who", "will", "would", "could", "should", "might", "must",
    "have", "has", "had", "been", "being", "are", "was", "were", "is", "am",
])

COMMON_WORDS = frozenset([
    "the", "and", "or", "a", "an", "in", "on", "at", "to", "for", "with", "by",
    "is", "are", "was", "were", "be", "been", "being", "have", "has", "had",
    "do", "does", "did", "will", "would", "should", "could", "can", "may", "might",
    "must", "shall", "this", "that", "these", "those", "it", "they", "we", "you",
    "he", "she", "him", "her", "them", "their", "our", "your", "of", "from",
    "as", "but", "not", "no", "yes", "all", "any", "some", "many", "few", "most",
    "other", "another", "such", "what", "which", "who", "whom", "whose", "when",
    "where", "why", "how", "if", "then", "else", "than", "more", "less", "very",
    "too", "so", "just", "now", "here", "there", "up", "down", "out", "off",
    "over", "under", "again", "further", "once",
])

PROGRAMMING_TERMS = frozenset([
    "function", "class", "method", "variable", "constant", "interface", "type",
    "module", "import", "export", "return", "throw", "catch", "try", "async",
    "await", "promise", "callback", "event", "listener", "handler", "component",
    "service", "controller", "model", "view", "router", "middleware", "api",
    "endpoint", "request", "response", "http", "https", "json", "xml", "html",
    "css", "javascript", "typescript", "python", "java", "react", "angular",
    "vue", "node", "express", "database", "sql", "mongodb", "redis", "cache",
    "session", "cookie", "token", "auth", "authentication", "authorization",
    "login", "logout", "user", "admin", "role", "permission", "security",
    "validation", "sanitization", "encryption", "hash", "password", "email",
    "form", "input", "output", "file", "upload", "download", "stream", "buffer",
    "array", "object", "string", "number", "boolean", "null", "undefined",
    "error", "exception", "bug", "fix", "patch", "update", "upgrade", "deploy",
    "build", "compile", "test", "debug", "log", "console", "config", "setting",
    "environment", "development", "production", "staging", "server", "client",
    "frontend", "backend", "fullstack", "framework", "library", "package",
    "dependency", "version", "git", "commit", "branch", "merge", "pull", "push",
])

CASE_SENSITIVE_TERMS = ("React", "Angular", "Vue", "Node", "Express", "MongoDB", "Redis")

# Words too generic to be a called function even when followed by "("
GENERIC_CALL_WORDS = frozenset(["user", "error", "data", "info", "text", "name", "value", "item", "list"])

CAPITALIZED_FILLERS = frozenset([
    "This", "That", "These", "Those", "The", "A", "An", "And", "Or", "But",
    "If", "When", "Where", "How", "Why", "What", "Who",
])

CODE_CONTEXT_KEYWORDS = (
    "function", "class", "method", "variable", "const", "let", "var",
    "import", "export", "require", "module", "component", "service",
    "api", "endpoint", "database", "query", "error", "exception",
    "bug", "fix", "code", "script", "file", "directory", "path",
)

# ============================================================================
# LIMITS AND SCORES
# ============================================================================

SIMPLE_KEYWORD_LIMIT = 10
SIMPLE_ENTITY_LIMIT = 15
SIMPLE_ENTITY_CONFIDENCE = 0.5
SIMPLE_INTENT_CONFIDENCE = 0.3

KEYWORD_LIMIT = 20
INTENT_KEYWORD_LIMIT = 15
ENTITY_LIMIT = 15

IDF_FLOOR = 0.1
PROGRAMMING_TERM_BOOST = 1.5
CODE_IDENTIFIER_BOOST = 1.3

DEFAULT_INTENT = "general"
DEFAULT_INTENT_CONFIDENCE = 0.3
MAX_INTENT_CONFIDENCE = 0.95

ENTITY_KINDS = ("function", "class", "file", "variable")

# ============================================================================
# PATTERNS
# ============================================================================

SIMPLE_FILE_PATTERN = re.compile(r"[a-zA-Z0-9_\-]+\.(?:js|ts|jsx|tsx|py|java|rb|php|go|cs|html|css|json)\b")
SIMPLE_CALL_PATTERN = re.compile(r"[a-zA-Z_$][a-zA-Z0-9_$]*\s*\(")
SIMPLE_CAMEL_PATTERN = re.compile(r"\b[a-z][a-zA-Z0-9]*[A-Z][a-zA-Z0-9]*\b")

IDENTIFIER_PATTERN = re.compile(r"^[a-zA-Z_$][a-zA-Z0-9_$]*$")

FUNCTION_PATTERNS = (
    re.compile(r"\bfunction\s+([a-zA-Z_$][a-zA-Z0-9_$]*)\s*\("),
    re.compile(r"\b([a-zA-Z_$][a-zA-Z0-9_$]*)\s*\("),
    re.compile(r"\.([a-zA-Z_$][a-zA-Z0-9_$]*)\s*\("),
    re.compile(r"\basync\s+([a-zA-Z_$][a-zA-Z0-9_$]*)"),
    re.compile(r"\bconst\s+([a-zA-Z_$][a-zA-Z0-9_$]*)\s*=\s*\([^)]*\)\s*=>"),
    re.compile(r"\b(?:let|var)\s+([a-zA-Z_$][a-zA-Z0-9_$]*)\s*=\s*\([^)]*\)\s*=>"),
    re.compile(r"\b([a-zA-Z_$][a-zA-Z0-9_$]*)\s+(?:method|function)\b"),
    re.compile(r"\b(?:method|function)\s+([a-zA-Z_$][a-zA-Z0-9_$]*)\b"),
    re.compile(r"\bdef\s+([a-zA-Z_][a-zA-Z0-9_]*)\s*\("),
)
PERMISSIVE_CALL_PATTERN = FUNCTION_PATTERNS[1]

CLASS_PATTERNS = (
    re.compile(r"\bclass\s+([A-Z][a-zA-Z0-9_$]*)"),
    re.compile(r"\bnew\s+([A-Z][a-zA-Z0-9_$]*)\s*\("),
    re.compile(r"\bextends\s+([A-Z][a-zA-Z0-9_$]*)"),
    re.compile(r"\bimplements\s+([A-Z][a-zA-Z0-9_$]*)"),
)
PASCAL_CASE_PATTERN = re.compile(r"\b([A-Z][a-z]+(?:[A-Z][a-z]*)*)\b")

FILE_PATTERNS = (
    re.compile(r"\.\.?/[a-zA-Z0-9_\-/.]+\.[a-zA-Z0-9]+"),
    re.compile(r"/[a-zA-Z0-9_\-/.]+\.[a-zA-Z0-9]+"),
    re.compile(r"[A-Z]:\\[a-zA-Z0-9_\-\\.]+\.[a-zA-Z0-9]+"),
    re.compile(r"\b[a-zA-Z0-9_\-]+\.(?:js|ts|jsx|tsx|py|java|rb|php|go|cs|html|css|json|md|yml|yaml|xml|sql|sh|bat)\b"),
    re.compile(r"\b[a-zA-Z0-9_\-]+(?:/[a-zA-Z0-9_\-]+)*/[a-zA-Z0-9_\-]+\.[a-zA-Z0-9]+"),
    re.compile(r"@[a-zA-Z0-9_\-]+/[a-zA-Z0-9_\-]+"),
)
PATH_COMPONENT_PATTERN = re.compile(r"^[a-zA-Z][a-zA-Z0-9_\-]*$")

DOT_CALL_PATTERN = re.compile(r"([a-zA-Z_$][a-zA-Z0-9_$]*)\.([a-zA-Z_$][a-zA-Z0-9_$]*)\s*\(")
PROPERTY_ACCESS_PATTERN = re.compile(r"([a-zA-Z_$][a-zA-Z0-9_$]*)\.([a-zA-Z_$][a-zA-Z0-9_$]*)\b(?!\s*\()")
TEMPLATE_VARIABLE_PATTERN = re.compile(r"\$\{([a-zA-Z_$][a-zA-Z0-9_$]*)\}")
IMPORT_LIST_PATTERN = re.compile(r"import\s*\{\s*([^}]+)\s*\}\s*from\s*['\"]([^'\"]+)['\"]")
EXPORT_LIST_PATTERN = re.compile(r"export\s*\{\s*([^}]+)\s*\}", re.IGNORECASE)
JSX_COMPONENT_PATTERN = re.compile(r"<([A-Z][a-zA-Z0-9]*)")
API_ROUTE_PATTERN = re.compile(r"['\"](/[a-zA-Z0-9_\-/]+)['\"]")

VARIABLE_PATTERNS = (
    re.compile(r"\b(?:const|let|var)\s+([a-zA-Z_$][a-zA-Z0-9_$]*)"),
    re.compile(r"\b([a-z]+(?:_[a-z0-9]+)+)\b"),
)
CAMEL_VARIABLE_PATTERN = re.compile(r"\b([a-z][a-z0-9]*(?:[A-Z][a-z0-9]*)+)\b")
DECLARATION_CONTEXT_PATTERN = re.compile(r"\b(?:const|let|var|variable)\b", re.IGNORECASE)

CODE_CONTEXT_PATTERNS = (
    re.compile(r"\b[a-zA-Z_$][a-zA-Z0-9_$]*\s*\("),
    re.compile(r"\b[a-zA-Z_$][a-zA-Z0-9_$]*\.[a-zA-Z_$][a-zA-Z0-9_$]*"),
    re.compile(r"[a-zA-Z0-9_\-]+\.(?:js|ts|jsx|tsx|py|java|rb|php|go|cs|html|css|json)"),
    re.compile(r"/[a-zA-Z0-9_\-/]+"),
    re.compile(r"@[a-zA-Z0-9_\-]+/[a-zA-Z0-9_\-]+"),
    re.compile(r"\$\{[a-zA-Z_$][a-zA-Z0-9_$]*\}"),
    re.compile(r"<[A-Z][a-zA-Z0-9]*>"),
    re.compile(r"\b(?:const|let|var)\s+[a-zA-Z_$]"),
    re.compile(r"\bclass\s+[A-Z][a-zA-Z0-9_$]*"),
)

CODE_IDENTIFIER_PATTERNS = (
    re.compile(r"^[a-z]+[A-Z][a-zA-Z]*$"),
    re.compile(r"^[A-Z][a-zA-Z]*$"),
    re.compile(r"^[a-z]+_[a-z_]+$"),
    re.compile(r"\.(?:js|ts|py|java|rb|php|go|cs|html|css|json|md|yml|yaml)$"),
    re.compile(r"^[a-zA-Z]+\.[a-zA-Z]+"),
)
LIKELY_IDENTIFIER_PREFIX = re.compile(
    r"^(get|set|is|has|can|should|will|on|handle|process|create|update|delete|fetch|load|save|init|start|stop|run|exec)"
)
LIKELY_IDENTIFIER_SUFFIX = re.compile(
    r"(Handler|Service|Controller|Manager|Provider|Factory|Builder|Util|Helper|Config|Settings|Data|Info|Result|Response|Request|Error|Exception)$"
)

# ============================================================================
# INTENT DICTIONARIES
# ============================================================================

BUG_INTENT_PATTERNS: Dict[str, Dict] = {
    "frontend": {
        "keywords": ["ui", "interface", "component", "render", "display", "css", "html", "react",
                     "angular", "vue", "dom", "browser", "client"],
        "confidence": 0.8, "category": "location",
    },
    "backend": {
        "keywords": ["api", "server", "database", "query", "endpoint", "service", "controller",
                     "model", "auth", "middleware"],
        "confidence": 0.8, "category": "location",
    },
    "database": {
        "keywords": ["database", "sql", "query", "table", "schema", "migration", "connection",
                     "mongodb", "postgres", "mysql"],
        "confidence": 0.9, "category": "location",
    },
    "authentication": {
        "keywords": ["auth", "login", "logout", "token", "session", "permission", "role",
                     "security", "password"],
        "confidence": 0.85, "category": "location",
    },
    "logic_error": {
        "keywords": ["wrong", "incorrect", "unexpected", "logic", "calculation", "algorithm",
                     "condition", "if", "else"],
        "confidence": 0.7, "category": "type",
    },
    "runtime_error": {
        "keywords": ["crash", "exception", "error", "null", "undefined", "reference", "memory", "timeout"],
        "confidence": 0.8, "category": "type",
    },
    "performance": {
        "keywords": ["slow", "performance", "speed", "optimization", "memory", "cpu", "load", "latency"],
        "confidence": 0.75, "category": "type",
    },
    "integration": {
        "keywords": ["integration", "api", "external", "third-party", "webhook", "callback", "sync"],
        "confidence": 0.7, "category": "type",
    },
}

FEATURE_INTENT_PATTERNS: Dict[str, Dict] = {
    "crud_operations": {
        "keywords": ["create", "read", "update", "delete", "add", "edit", "remove", "list", "view", "manage"],
        "confidence": 0.8, "category": "similarity",
    },
    "user_management": {
        "keywords": ["user", "account", "profile", "registration", "login", "auth", "permission", "role"],
        "confidence": 0.85, "category": "similarity",
    },
    "data_visualization": {
        "keywords": ["chart", "graph", "dashboard", "report", "analytics", "visualization", "display", "show"],
        "confidence": 0.8, "category": "similarity",
    },
    "api_integration": {
        "keywords": ["api", "integration", "external", "service", "webhook", "endpoint", "rest", "graphql"],
        "confidence": 0.8, "category": "similarity",
    },
    "simple_ui": {
        "keywords": ["button", "form", "input", "field", "simple", "basic", "page", "view"],
        "confidence": 0.6, "category": "complexity",
    },
    "complex_workflow": {
        "keywords": ["workflow", "process", "step", "wizard", "multi", "complex", "advanced", "pipeline"],
        "confidence": 0.8, "category": "complexity",
    },
    "real_time": {
        "keywords": ["real-time", "live", "websocket", "streaming", "notification", "instant", "immediate"],
        "confidence": 0.9, "category": "complexity",
    },
}

IMPROVEMENT_INTENT_PATTERNS: Dict[str, Dict] = {
    "performance_optimization": {
        "keywords": ["performance", "optimize", "speed", "faster", "efficient", "memory", "cpu", "cache", "load"],
        "confidence": 0.9, "category": "scope",
    },
    "code_quality": {
        "keywords": ["refactor", "clean", "maintainable", "readable", "structure", "organize", "quality"],
        "confidence": 0.8, "category": "scope",
    },
    "security_enhancement": {
        "keywords": ["security", "secure", "vulnerability", "encryption", "auth", "permission", "safe"],
        "confidence": 0.9, "category": "scope",
    },
    "user_experience": {
        "keywords": ["ux", "ui", "user", "experience", "interface", "usability", "accessibility", "design"],
        "confidence": 0.8, "category": "scope",
    },
    "architectural": {
        "keywords": ["architecture", "structure", "design", "pattern", "framework", "system", "infrastructure"],
        "confidence": 0.85, "category": "impact",
    },
    "localized": {
        "keywords": ["function", "method", "component", "specific", "single", "individual", "particular"],
        "confidence": 0.6, "category": "impact",
    },
    "cross_cutting": {
        "keywords": ["across", "throughout", "global", "system-wide", "all", "entire", "multiple"],
        "confidence": 0.8, "category": "impact",
    },
}

INTENT_PATTERNS_BY_TASK_TYPE: Dict[str, Dict[str, Dict]] = {
    "bug": BUG_INTENT_PATTERNS,
    "feature": FEATURE_INTENT_PATTERNS,
    "improvement": IMPROVEMENT_INTENT_PATTERNS,
}


# ============================================================================
# DATA CLASSES
# ============================================================================


@dataclass
class Keyword:
    """A search term with its weight (1.0 for fallback or caller-supplied terms)."""

    term: str
    weight: float = 1.0
    frequency: int = 0


@dataclass
class Entity:
    """A named code element mentioned in the task text."""

    name: str
    kind: str  # function, class, file, variable
    confidence: float = SIMPLE_ENTITY_CONFIDENCE


@dataclass
class IntentResult:
    intent: str
    confidence: float
    category: str = DEFAULT_INTENT


@dataclass
class SignalBundle:
    """Everything the pipeline knows about a task's text."""

    keywords: List[Keyword] = field(default_factory=list)
    entities: List[Entity] = field(default_factory=list)
    intent: IntentResult = field(
        default_factory=lambda: IntentResult(DEFAULT_INTENT, DEFAULT_INTENT_CONFIDENCE)
    )
    secondary_intents: List[IntentResult] = field(default_factory=list)
    combined_text: str = ""
    extractor: str = "simple"
    confidence: float = 0.0

    @property
    def keyword_terms(self) -> List[str]:
        return [k.term for k in self.keywords]

    @property
    def entity_names(self) -> List[str]:
        return [e.name for e in self.entities]

    def entities_of_kind(self, kind: str) -> List[Entity]:
        return [e for e in self.entities if e.kind == kind]

    def with_overrides(
        self,
        keywords: Optional[List[str]] = None,
        entities: Optional[List[str]] = None,
    ) -> "SignalBundle":
        """Replace extracted keywords/entities with caller-supplied ones.

        Caller-supplied terms carry weight 1.0 and confidence 1.0.
        """
        changes = {}
        if keywords:
            changes["keywords"] = [Keyword(term=k, weight=1.0) for k in _unique(keywords)]
        if entities:
            changes["entities"] = [
                Entity(name=e, kind=infer_entity_kind(e), confidence=1.0) for e in _unique(entities)
            ]
        return replace(self, **changes) if changes else self


def _unique(values: Iterable[str]) -> List[str]:
    """Order-preserving de-duplication."""
    return list(dict.fromkeys(v for v in values if v))


def infer_entity_kind(name: str) -> str:
    """Best guess at what kind of code element a bare name refers to."""
    if SIMPLE_FILE_PATTERN.search(name) or "/" in name or "\\" in name:
        return "file"
    if "(" in name:
        return "function"
    if re.match(r"^[A-Z][a-zA-Z0-9]*$", name):
        return "class"
    return "variable"


# ============================================================================
# EXTRACTORS
# ============================================================================


class SignalExtractor(ABC):
    """
    Interface for anything that can turn task text into a SignalBundle.

    Implementations are synchronous; extract_async runs them off the event
    loop unless an implementation has a native async path.
    """

    name = "base"

    @abstractmethod
    def extract(self, text: str, task_type: str) -> SignalBundle:
        """
        Extract signals from concatenated task text.

        Args:
            text: Non-empty task fields joined by single spaces
            task_type: bug, feature or improvement

        Returns:
            SignalBundle with keywords, entities and intent
        """
        pass

    async def extract_async(self, text: str, task_type: str) -> SignalBundle:
        return await asyncio.to_thread(self.extract, text, task_type)


class SimpleSignalExtractor(SignalExtractor):
    """Frequency/regex fallback extractor."""

    name = "simple"

    def __init__(self, max_keywords: int = SIMPLE_KEYWORD_LIMIT, max_entities: int = SIMPLE_ENTITY_LIMIT):
        self.max_keywords = max_keywords
        self.max_entities = max_entities

    def extract(self, text: str, task_type: str) -> SignalBundle:
        task_type = getattr(task_type, "value", task_type)
        return SignalBundle(
            keywords=[Keyword(term=t) for t in self.extract_keywords(text)],
            entities=self.extract_entities(text),
            intent=IntentResult(intent=task_type, confidence=SIMPLE_INTENT_CONFIDENCE, category=DEFAULT_INTENT),
            combined_text=text or "",
            extractor=self.name,
            confidence=SIMPLE_INTENT_CONFIDENCE,
        )

    def extract_keywords(self, text: str) -> List[str]:
        if not text:
            return []
        words = re.sub(r"[^\w\s]", " ", text.lower()).split()
        survivors = [w for w in words if len(w) > 3 and w not in SIMPLE_STOP_WORDS]
        return _unique(survivors)[: self.max_keywords]

    def extract_entities(self, text: str) -> List[Entity]:
        if not text:
            return []

        found: Dict[str, str] = {}

        def add(name: str, kind: str) -> None:
            if name and name not in found:
                found[name] = kind

        for match in SIMPLE_FILE_PATTERN.finditer(text):
            add(match.group(0), "file")
        for match in SIMPLE_CALL_PATTERN.finditer(text):
            add(re.sub(r"\s*\($", "", match.group(0)), "function")
        for match in SIMPLE_CAMEL_PATTERN.finditer(text):
            add(match.group(0), "variable")

        return [
            Entity(name=name, kind=kind, confidence=SIMPLE_ENTITY_CONFIDENCE)
            for name, kind in list(found.items())[: self.max_entities]
        ]


class TextAnalyzer(SignalExtractor):
    """
    Scored keyword, entity and intent extraction.

    Responsibilities:
    - TF-IDF keywords over a tokenization that splits camelCase, snake_case
      and kebab-case (an optional corpus sets document frequencies)
    - Confidence-scored function/class/file/variable entities
    - Intent classification from per task type keyword dictionaries

    Usage:
        analyzer = TextAnalyzer()
        analyzer.update_document_frequency(previous_task_texts)
        bundle = analyzer.extract(text, "bug")
    """

    name = "text_analyzer"

    def __init__(self):
        self.document_frequency: Counter = Counter()
        self.total_documents = 0

    def extract(self, text: str, task_type: str) -> SignalBundle:
        task_type = getattr(task_type, "value", task_type)
        keywords = self.extract_keywords(text, KEYWORD_LIMIT)
        entities = self.extract_entities(text)[:ENTITY_LIMIT]
        primary, secondary, confidence = self.classify_intent(text, task_type)

        return SignalBundle(
            keywords=_normalize_weights(keywords),
            entities=entities,
            intent=primary,
            secondary_intents=secondary,
            combined_text=text or "",
            extractor=self.name,
            confidence=confidence,
        )

    # ------------------------------------------------------------------
    # Keywords
    # ------------------------------------------------------------------

    def extract_keywords(self, text: str, max_keywords: int = 10) -> List[Keyword]:
        """Top keywords by TF-IDF score (unnormalized)."""
        if not text or not text.strip():
            return []

        tokens = self._filter_tokens(self._tokenize(text))
        if not tokens:
            return []

        term_frequency = Counter(tokens)
        total_terms = len(tokens)
        total_docs = max(self.total_documents, 1)

        scored = []
        for term, freq in term_frequency.items():
            tf = freq / total_terms
            doc_freq = self.document_frequency.get(term) or 1
            score = tf * max(math.log(total_docs / doc_freq), IDF_FLOOR)
            if term in PROGRAMMING_TERMS:
                score *= PROGRAMMING_TERM_BOOST
            if self._is_code_identifier(term):
                score *= CODE_IDENTIFIER_BOOST
            scored.append(Keyword(term=term, weight=score, frequency=freq))

        scored.sort(key=lambda k: k.weight, reverse=True)
        return scored[:max_keywords]

    def update_document_frequency(self, texts: List[str]) -> None:
        """Reset the IDF corpus to the given documents."""
        self.total_documents = len(texts)
        self.document_frequency.clear()
        for text in texts:
            for token in set(self._filter_tokens(self._tokenize(text))):
                self.document_frequency[token] += 1
        logger.debug(
            f"Document frequency updated from {self.total_documents} documents",
            extra={"vocabulary_size": len(self.document_frequency)},
        )

    def extract_programming_terms(self, text: str) -> List[str]:
        terms = [t for t in self._tokenize(text) if t in PROGRAMMING_TERMS]
        for word in text.split():
            clean = re.sub(r"[^\w]", "", word)
            if clean in CASE_SENSITIVE_TERMS:
                terms.append(clean)
        return _unique(terms)

    def get_stats(self) -> Dict[str, int]:
        return {
            "total_documents": self.total_documents,
            "vocabulary_size": len(self.document_frequency),
        }

    @staticmethod
    def _tokenize(text: str) -> List[str]:
        expanded = re.sub(r"([a-z])([A-Z])", r"\1 \2", text)
        expanded = re.sub(r"[_-]", " ", expanded)
        cleaned = re.sub(r"[^\w\s./\\]", " ", expanded.lower())
        tokens = [t.strip(".") for t in cleaned.split()]
        return [t for t in tokens if t]

    @staticmethod
    def _filter_tokens(tokens: List[str]) -> List[str]:
        return [
            t for t in tokens
            if len(t) > 2 and t not in COMMON_WORDS and not t.isdigit()
        ]

    # ------------------------------------------------------------------
    # Entities
    # ------------------------------------------------------------------

    def extract_entities(self, text: str) -> List[Entity]:
        """Entities sorted by confidence, one per (lower-case name, kind)."""
        if not text or not text.strip():
            return []

        has_code_context = self.has_code_context(text)
        entities: List[Entity] = []
        entities.extend(self._extract_function_names(text))
        entities.extend(self._extract_class_names(text, has_code_context))
        entities.extend(self._extract_file_paths(text))
        entities.extend(self._extract_code_references(text))
        if has_code_context:
            entities.extend(self._extract_variable_names(text))
        else:
            entities = [e for e in entities if e.confidence > 0.6]

        deduped = _deduplicate_entities(entities)
        deduped.sort(key=lambda e: e.confidence, reverse=True)
        return deduped

    def _extract_function_names(self, text: str) -> List[Entity]:
        functions = []
        for pattern in FUNCTION_PATTERNS:
            for match in pattern.finditer(text):
                name = match.group(1)
                if not name or len(name) <= 1 or not IDENTIFIER_PATTERN.match(name):
                    continue
                lowered = name.lower()
                if lowered in COMMON_WORDS:
                    continue
                if pattern is PERMISSIVE_CALL_PATTERN and lowered in GENERIC_CALL_WORDS:
                    continue
                functions.append(Entity(name, "function", self._entity_confidence(name, "function", text)))
        return functions

    def _extract_class_names(self, text: str, has_code_context: bool) -> List[Entity]:
        classes = []
        for pattern in CLASS_PATTERNS:
            for match in pattern.finditer(text):
                name = match.group(1)
                if name and len(name) > 2 and IDENTIFIER_PATTERN.match(name):
                    classes.append(Entity(name, "class", self._entity_confidence(name, "class", text)))

        if has_code_context:
            for match in PASCAL_CASE_PATTERN.finditer(text):
                name = match.group(1)
                if (
                    len(name) > 2
                    and name.lower() not in COMMON_WORDS
                    and name not in CAPITALIZED_FILLERS
                ):
                    classes.append(Entity(name, "class", self._entity_confidence(name, "class", text)))
        return classes

    def _extract_file_paths(self, text: str) -> List[Entity]:
        files = []
        for pattern in FILE_PATTERNS:
            for match in pattern.finditer(text):
                path = match.group(0)
                files.append(Entity(path, "file", self._entity_confidence(path, "file", text)))

        components = []
        for entity in files:
            if "/" not in entity.name:
                continue
            for part in entity.name.split("/"):
                if (
                    len(part) > 2
                    and "." not in part
                    and part.lower() not in COMMON_WORDS
                    and PATH_COMPONENT_PATTERN.match(part)
                ):
                    components.append(Entity(part, "file", max(0.3, entity.confidence - 0.2)))

        return files + components

    def _extract_code_references(self, text: str) -> List[Entity]:
        refs: List[Entity] = []

        def add(name: Optional[str], kind: str, confidence: float) -> None:
            if name and len(name.strip()) > 1 and name.lower() not in COMMON_WORDS:
                refs.append(Entity(name, kind, confidence))

        for match in DOT_CALL_PATTERN.finditer(text):
            add(match.group(1), "variable", 0.6)
            add(match.group(2), "function", 0.7)

        for match in PROPERTY_ACCESS_PATTERN.finditer(text):
            # File names look like property access; those are handled as files
            if SIMPLE_FILE_PATTERN.fullmatch(match.group(0)):
                continue
            add(match.group(1), "variable", 0.5)
            add(match.group(2), "variable", 0.6)

        for match in TEMPLATE_VARIABLE_PATTERN.finditer(text):
            add(match.group(1), "variable", 0.7)

        for match in IMPORT_LIST_PATTERN.finditer(text):
            for name in _split_name_list(match.group(1)):
                add(name, "class" if name[0].isupper() else "function", 0.8)
            add(match.group(2), "file", 0.9)

        for match in EXPORT_LIST_PATTERN.finditer(text):
            for name in _split_name_list(match.group(1)):
                add(name, "class" if name[0].isupper() else "function", 0.8)

        for match in JSX_COMPONENT_PATTERN.finditer(text):
            add(match.group(1), "class", 0.8)

        for match in API_ROUTE_PATTERN.finditer(text):
            add(match.group(1), "file", 0.8)

        return refs

    def _extract_variable_names(self, text: str) -> List[Entity]:
        variables = []
        declaration_context = bool(DECLARATION_CONTEXT_PATTERN.search(text))

        candidates = []
        for pattern in VARIABLE_PATTERNS:
            candidates.extend(m.group(1) for m in pattern.finditer(text))
        for match in CAMEL_VARIABLE_PATTERN.finditer(text):
            name = match.group(1)
            if declaration_context or self._is_likely_code_identifier(name):
                candidates.append(name)

        for name in candidates:
            lowered = name.lower()
            if (
                len(name) > 2
                and IDENTIFIER_PATTERN.match(name)
                and lowered not in PROGRAMMING_TERMS
                and lowered not in COMMON_WORDS
            ):
                variables.append(Entity(name, "variable", self._entity_confidence(name, "variable", text)))
        return variables

    def _entity_confidence(self, entity: str, kind: str, context: str) -> float:
        confidence = 0.5
        lower_context = context.lower()
        lower_entity = entity.lower()

        if kind == "function":
            if any(w in lower_context for w in ("function", "method", "call")) or "()" in entity:
                confidence += 0.3
            if self._is_code_identifier(entity):
                confidence += 0.2
        elif kind == "class":
            if any(w in lower_context for w in ("class", "component", "service", "controller")):
                confidence += 0.3
            if entity[:1].isupper():
                confidence += 0.2
        elif kind == "file":
            if any(c in entity for c in ("/", "\\", ".")):
                confidence += 0.3
            if any(w in lower_context for w in ("file", "import", "require")):
                confidence += 0.2
        elif kind == "variable":
            if any(w in lower_context for w in ("variable", "const", "let", "var")):
                confidence += 0.3
            if self._is_code_identifier(entity):
                confidence += 0.1

        if lower_entity in COMMON_WORDS:
            confidence -= 0.4
        if lower_entity in PROGRAMMING_TERMS:
            confidence += 0.1

        return max(0.0, min(1.0, confidence))

    @staticmethod
    def has_code_context(text: str) -> bool:
        lower_text = text.lower()
        if any(keyword in lower_text for keyword in CODE_CONTEXT_KEYWORDS):
            return True
        return any(p.search(text) for p in CODE_CONTEXT_PATTERNS)

    @staticmethod
    def _is_code_identifier(term: str) -> bool:
        return any(p.search(term) for p in CODE_IDENTIFIER_PATTERNS)

    @staticmethod
    def _is_likely_code_identifier(term: str) -> bool:
        return bool(
            re.match(r"^[a-z]+[A-Z][a-zA-Z]*$", term)
            or re.match(r"^[a-z]+_[a-z_]+$", term)
            or LIKELY_IDENTIFIER_PREFIX.match(term.lower())
            or LIKELY_IDENTIFIER_SUFFIX.search(term)
            or term.lower() in PROGRAMMING_TERMS
        )

    # ------------------------------------------------------------------
    # Intent
    # ------------------------------------------------------------------

    def classify_intent(self, text: str, task_type: str):
        """
        Classify the task's primary and secondary intents.

        Returns:
            (primary IntentResult, secondary IntentResults, overall confidence)
        """
        task_type = getattr(task_type, "value", task_type)
        if not text or not text.strip():
            return IntentResult("unknown", 0.0, DEFAULT_INTENT), [], 0.0

        lower_text = text.lower()
        patterns = INTENT_PATTERNS_BY_TASK_TYPE.get(task_type)
        if patterns is None:
            return IntentResult("unknown", 0.0, DEFAULT_INTENT), [], 0.0

        terms = [k.term.lower() for k in self.extract_keywords(text, INTENT_KEYWORD_LIMIT)]
        terms += [e.name.lower() for e in self.extract_entities(text)]

        primary = self._best_intent_match(lower_text, terms, patterns)
        secondary = self._secondary_intents(lower_text, task_type)
        return primary, secondary, self._overall_confidence(primary, secondary, text)

    @staticmethod
    def _best_intent_match(lower_text: str, terms: List[str], patterns: Dict[str, Dict]) -> IntentResult:
        best = IntentResult(DEFAULT_INTENT, DEFAULT_INTENT_CONFIDENCE, DEFAULT_INTENT)
        best_score = 0.0

        for intent_name, pattern in patterns.items():
            score = 0
            match_count = 0
            for keyword in pattern["keywords"]:
                if keyword in lower_text:
                    score += 2
                    match_count += 1
                elif any(keyword in term or term in keyword for term in terms):
                    score += 1
                    match_count += 1

            match_ratio = match_count / len(pattern["keywords"])
            final_score = score * match_ratio * pattern["confidence"]
            if final_score > best_score:
                best_score = final_score
                best = IntentResult(
                    intent=intent_name,
                    confidence=min(MAX_INTENT_CONFIDENCE, final_score / 10),
                    category=pattern["category"],
                )
        return best

    @staticmethod
    def _secondary_intents(lower_text: str, task_type: str) -> List[IntentResult]:
        def has_any(*words: str) -> bool:
            return any(w in lower_text for w in words)

        secondary = []
        if task_type == "bug":
            if has_any("critical", "urgent", "blocking"):
                secondary.append(IntentResult("high_severity", 0.8, "severity"))
            elif has_any("minor", "cosmetic", "low"):
                secondary.append(IntentResult("low_severity", 0.7, "severity"))
            if has_any("always", "consistently", "every time"):
                secondary.append(IntentResult("reproducible", 0.8, "reproducibility"))
            elif has_any("sometimes", "intermittent", "random"):
                secondary.append(IntentResult("intermittent", 0.7, "reproducibility"))
        elif task_type == "feature":
            if has_any("urgent", "asap", "priority"):
                secondary.append(IntentResult("high_priority", 0.8, "priority"))
            if has_any("user", "customer", "client"):
                secondary.append(IntentResult("user_facing", 0.7, "visibility"))
            elif has_any("internal", "admin", "developer"):
                secondary.append(IntentResult("internal", 0.7, "visibility"))
        elif task_type == "improvement":
            if has_any("quick", "simple", "easy"):
                secondary.append(IntentResult("low_effort", 0.7, "effort"))
            elif has_any("complex", "major", "significant"):
                secondary.append(IntentResult("high_effort", 0.8, "effort"))
            if has_any("breaking", "compatibility", "migration"):
                secondary.append(IntentResult("breaking_change", 0.9, "impact"))
        return secondary

    def _overall_confidence(self, primary: IntentResult, secondary: List[IntentResult], text: str) -> float:
        confidence = primary.confidence
        if secondary:
            avg_secondary = sum(i.confidence for i in secondary) / len(secondary)
            confidence = min(MAX_INTENT_CONFIDENCE, confidence + avg_secondary * 0.1)
        if self.has_code_context(text):
            confidence = min(MAX_INTENT_CONFIDENCE, confidence + 0.05)
        if len(text) < 20:
            confidence *= 0.8
        return max(0.1, confidence)


def _split_name_list(raw: str) -> List[str]:
    """Names from an import/export brace list ("a, b as c" -> a, b)."""
    names = []
    for part in raw.split(","):
        name = re.split(r"\s+as\s+|:", part.strip())[0].strip()
        if name and IDENTIFIER_PATTERN.match(name):
            names.append(name)
    return names


def _deduplicate_entities(entities: List[Entity]) -> List[Entity]:
    """Keep the highest-confidence entity per (lower-case name, kind)."""
    best: Dict[tuple, Entity] = {}
    for entity in entities:
        key = (entity.name.lower(), entity.kind)
        existing = best.get(key)
        if existing is None or entity.confidence > existing.confidence:
            best[key] = entity
    return list(best.values())


def _normalize_weights(keywords: List[Keyword]) -> List[Keyword]:
    if not keywords:
        return []
    top = max(k.weight for k in keywords) or 1.0
    return [replace(k, weight=round(k.weight / top, 4)) for k in keywords]
