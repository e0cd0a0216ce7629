def list_cache_key(category: str, lang: str):
    return f"content:list:{category}:{lang}"

def detail_cache_key(category: str, slug: str, lang: str = None):
    # locale-less legacy routes resolve differently, so they get their own key
    return f"content:detail:{category}:{lang or '-'}:{slug}"
