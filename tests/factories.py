"""
Builders for lesson and curriculum test data.
"""

CURRICULUM = {
    "texto_del_pomodoro": "Aprender sobre condicionales en Scratch",
    "tematica_semanal": "Scratch y pensamiento computacional",
    "concepto_del_dia": "Bloques de control",
}


def make_quiz(questions=3, options=4, key="opciones"):
    return [
        {
            "pregunta": f"Pregunta {i + 1}",
            key: [f"opción {j}" for j in range(options)],
            "respuesta_correcta": "opción 0",
        }
        for i in range(questions)
    ]


def make_passing_lesson():
    """A lesson that maxes out every heuristic dimension."""
    paragraph = (
        "Imagina que aprender sobre condicionales en Scratch es como un semáforo. "
        "Ejemplo: bloques de control y pensamiento computacional. "
    )
    content = (
        "# Condicionales en Scratch\n\n"
        "**Idea** **Bloques** **Control**\n\n" + paragraph * 60
    )
    return {"contenido": content, "quiz": make_quiz()}
