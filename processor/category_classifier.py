"""Keyword-based event category classifier."""
import logging
import re
from typing import Dict, List, Optional

from processor.fingerprint import normalize_text

logger = logging.getLogger(__name__)

DEFAULT_CATEGORY = 'outros'

# category -> (priority, keywords); lower priority wins ties.
CATEGORIES: Dict[str, tuple] = {
    'shows': (1, [
        'show', 'musica', 'concert', 'concerto', 'banda', 'cantor', 'cantora',
        'festival', 'rock', 'pop', 'sertanejo', 'funk', 'rap', 'eletronica',
        'jazz', 'blues', 'reggae', 'forro', 'pagode', 'samba', 'mpb', 'turne',
        'artista', 'live', 'dj', 'music',
    ]),
    'teatro': (2, [
        'teatro', 'peca', 'espetaculo', 'drama', 'comedia', 'musical', 'opera',
        'danca', 'ballet', 'bale', 'circo', 'stand up', 'monologo',
        'improviso', 'performance', 'arte cenica', 'theater',
    ]),
    'esportes': (3, [
        'futebol', 'basquete', 'volei', 'corrida', 'maratona', 'campeonato',
        'torneio', 'copa', 'liga', 'jogo', 'partida', 'competicao',
        'atletismo', 'natacao', 'ciclismo', 'triathlon', 'crossfit', 'run',
    ]),
    'gastronomia': (4, [
        'culinaria', 'gastronomia', 'gastronomico', 'food', 'comida',
        'degustacao', 'chef', 'restaurante', 'cerveja', 'vinho', 'churrasco',
        'barbecue', 'street food', 'food truck', 'cozinha', 'sabor',
    ]),
    'educacao': (5, [
        'curso', 'workshop', 'palestra', 'seminario', 'conferencia',
        'treinamento', 'capacitacao', 'aula', 'masterclass', 'webinar',
        'mentoria', 'coaching', 'aprendizado', 'congresso', 'simposio',
    ]),
    'tecnologia': (6, [
        'tech', 'tecnologia', 'programacao', 'software', 'hackathon',
        'startup', 'inovacao', 'digital', 'inteligencia artificial',
        'blockchain', 'meetup', 'dev', 'coding', 'python', 'dados',
    ]),
    'infantil': (7, [
        'infantil', 'crianca', 'criancas', 'familia', 'kids',
        'teatro infantil', 'show infantil', 'diversao', 'brinquedo',
        'recreacao', 'animacao',
    ]),
}

# Source taxonomy labels mapped onto the fixed vocabulary.
SOURCE_CATEGORY_MAP = {
    'music': 'shows',
    'musica': 'shows',
    'shows': 'shows',
    'shows e festas': 'shows',
    'festas e shows': 'shows',
    'performing visual arts': 'teatro',
    'teatro e espetaculos': 'teatro',
    'teatro': 'teatro',
    'sports fitness': 'esportes',
    'esportes': 'esportes',
    'food drink': 'gastronomia',
    'gastronomia': 'gastronomia',
    'business': 'educacao',
    'cursos e workshops': 'educacao',
    'congressos e palestras': 'educacao',
    'science technology': 'tecnologia',
    'tecnologia': 'tecnologia',
    'family education': 'infantil',
    'infantil': 'infantil',
}


class CategoryClassifier:
    """Classifies events into a fixed category vocabulary."""

    def __init__(self, categories: Optional[Dict[str, tuple]] = None):
        self.categories = categories or CATEGORIES
        self._patterns = {
            name: [(keyword, re.compile(rf'\b{re.escape(keyword)}\b')) for keyword in keywords]
            for name, (_, keywords) in self.categories.items()
        }

    @property
    def vocabulary(self) -> List[str]:
        return list(self.categories) + [DEFAULT_CATEGORY]

    def classify(self, title: str, description: str = '',
                 hint: Optional[str] = None) -> str:
        """
        Pick the best category for an event.

        A source-provided hint that maps onto the vocabulary wins; otherwise
        keyword matches are scored, with title matches counting double and
        longer (more specific) keywords weighing more.

        Args:
            title: Event title
            description: Event description
            hint: Source taxonomy label, if any

        Returns:
            Category name from the vocabulary
        """
        mapped = self.map_hint(hint)
        if mapped:
            return mapped

        norm_title = normalize_text(title)
        text = f"{norm_title} {normalize_text(description)}"

        scores = {}
        for name, patterns in self._patterns.items():
            score = 0.0
            for keyword, pattern in patterns:
                matches = len(pattern.findall(text))
                if not matches:
                    continue
                keyword_score = float(matches)
                if pattern.search(norm_title):
                    keyword_score *= 2
                if len(keyword) > 5:
                    keyword_score *= 1.5
                score += keyword_score
            if score > 0:
                priority = self.categories[name][0]
                scores[name] = score * (10 - priority) / 10

        if not scores:
            return DEFAULT_CATEGORY

        best = max(scores.items(), key=lambda item: (item[1], -self.categories[item[0]][0]))
        logger.debug(f"Classified '{title}' as {best[0]} (score {best[1]:.2f})")
        return best[0]

    def map_hint(self, hint: Optional[str]) -> Optional[str]:
        """Map a source taxonomy label onto the vocabulary, if known."""
        if not hint:
            return None
        key = normalize_text(hint)
        if key in self.categories:
            return key
        return SOURCE_CATEGORY_MAP.get(key)
